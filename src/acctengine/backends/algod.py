"""
Node REST backend (algod v2 API).

Serves the account-info, suggested-params and submit capabilities for a
single endpoint. Responses are validated against the schemas in
backends.base; any transport or schema error is raised to the caller.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from acctengine.backends.base import (
    AccountInformation,
    NodeBackend,
    SubmitResponse,
    TransactionParams,
)
from acctengine.constants import DEFAULT_REQUEST_TIMEOUT


class AlgodBackend(NodeBackend):
    """
    Backend for one algod node.

    The httpx client may be shared between backends; a backend only closes
    a client it created itself.
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
            self._headers["X-Algo-API-Token"] = api_token

    async def _api_call(
        self,
        method: str,
        endpoint: str,
        content: bytes | None = None,
    ) -> Any:
        url = f"{self.url}/{endpoint}"

        try:
            if method == "GET":
                response = await self.client.get(url, headers=self._headers)
            elif method == "POST":
                headers = {**self._headers, "Content-Type": "application/x-binary"}
                response = await self.client.post(url, content=content, headers=headers)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")

            response.raise_for_status()
            return response.json()

        except httpx.HTTPError as e:
            logger.debug(f"algod call failed: {self.url}/{endpoint} - {e}")
            raise

    async def get_account_info(self, address: str) -> AccountInformation:
        data = await self._api_call("GET", f"v2/accounts/{address}")
        return AccountInformation.model_validate(data)

    async def get_transaction_params(self) -> TransactionParams:
        data = await self._api_call("GET", "v2/transactions/params")
        return TransactionParams.model_validate(data)

    async def send_raw_transaction(self, signed_tx: bytes) -> str:
        data = await self._api_call("POST", "v2/transactions", content=signed_tx)
        return SubmitResponse.model_validate(data).tx_id

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
