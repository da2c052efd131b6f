"""
Transaction history backend (indexer v2 API).
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from acctengine.backends.base import HistoryBackend, TransactionsPage
from acctengine.constants import DEFAULT_REQUEST_TIMEOUT


class IndexerBackend(HistoryBackend):
    """
    Backend for one indexer endpoint.

    Continuation tokens returned in a page are opaque and only meaningful
    to the indexer that issued them.
    """

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        api_token: str | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self.url = url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._headers: dict[str, str] = {}
        if api_token:
            self._headers["X-Indexer-API-Token"] = api_token

    async def _api_call(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.url}/{endpoint}"

        try:
            response = await self.client.get(url, params=params, headers=self._headers)
            response.raise_for_status()
            return response.json()

        except httpx.HTTPError as e:
            logger.debug(f"indexer call failed: {self.url}/{endpoint} - {e}")
            raise

    async def lookup_account_transactions(
        self,
        address: str,
        min_round: int = 0,
        next_token: str | None = None,
    ) -> TransactionsPage:
        params: dict[str, Any] = {"min-round": min_round}
        if next_token:
            params["next"] = next_token

        data = await self._api_call(f"v2/accounts/{address}/transactions", params=params)
        return TransactionsPage.model_validate(data)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
