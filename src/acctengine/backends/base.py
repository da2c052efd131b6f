"""
Base ledger backend interfaces and response schemas.

One backend instance talks to exactly one endpoint. Failover across the
endpoint set happens one level up, in the engine, so a backend only has to
fetch, validate and raise.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AccountInformation(BaseModel):
    """Account state as reported by a node."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    address: str | None = None
    amount: int = Field(..., ge=0)
    round: int = Field(..., ge=0)


class TransactionParams(BaseModel):
    """Suggested transaction parameters as reported by a node."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    fee: int = Field(..., ge=0)
    min_fee: int = Field(default=0, ge=0, alias="min-fee")
    last_round: int = Field(..., ge=0, alias="last-round")
    genesis_id: str = Field(..., alias="genesis-id")
    genesis_hash: str = Field(..., alias="genesis-hash")
    consensus_version: str | None = Field(default=None, alias="consensus-version")


class SubmitResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tx_id: str = Field(..., min_length=1, alias="txId")


class TransactionsPage(BaseModel):
    """
    One page of an account's transaction history, newest first.

    Transactions are kept as raw dicts: each one is decoded separately so a
    single malformed record cannot invalidate the whole page.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    current_round: int = Field(default=0, ge=0, alias="current-round")
    next_token: str | None = Field(default=None, alias="next-token")
    transactions: list[dict[str, Any]] = Field(default_factory=list)


class NodeBackend(ABC):
    """Account info, suggested params and transaction submission."""

    url: str

    @abstractmethod
    async def get_account_info(self, address: str) -> AccountInformation:
        """Get balance and current round for an account"""

    @abstractmethod
    async def get_transaction_params(self) -> TransactionParams:
        """Get suggested parameters for new transactions"""

    @abstractmethod
    async def send_raw_transaction(self, signed_tx: bytes) -> str:
        """Submit a signed transaction, returns its id"""

    async def close(self) -> None:
        """Close backend connection"""
        pass


class HistoryBackend(ABC):
    """Paginated transaction history for an account."""

    url: str

    @abstractmethod
    async def lookup_account_transactions(
        self,
        address: str,
        min_round: int = 0,
        next_token: str | None = None,
    ) -> TransactionsPage:
        """
        Get one page of transactions at or after min_round.

        A next_token is only valid against the endpoint that issued it.
        """

    async def close(self) -> None:
        """Close backend connection"""
        pass
