"""
Wallet data models.

Native amounts are decimal integer strings in the ledger's smallest unit so
they survive JSON persistence without floating point loss. Arithmetic is
done on Python ints and converted back at the model boundary.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from acctengine.backends.base import TransactionParams
from acctengine.constants import TX_VALIDITY_WINDOW

UNSIGNED_AMOUNT_PATTERN = r"^\d+$"
SIGNED_AMOUNT_PATTERN = r"^-?\d+$"


class TransactionRecord(BaseModel):
    """Canonical engine-local transaction, confirmed or not."""

    txid: str = ""
    block_height: int = Field(default=0, ge=0)  # 0 while unconfirmed
    date: float = 0.0  # unix timestamp
    currency_code: str
    native_amount: str = Field(..., pattern=SIGNED_AMOUNT_PATTERN)
    network_fee: str = Field(default="0", pattern=UNSIGNED_AMOUNT_PATTERN)
    our_receive_addresses: list[str] = Field(default_factory=list)
    signed_tx: str = ""  # hex, empty for records learned from history
    other_params: dict[str, Any] = Field(default_factory=dict)


class SyncCursor(BaseModel):
    """Boundary of the history already merged into local state."""

    latest_txid: str | None = None
    latest_round: int = Field(default=0, ge=0)


class WalletState(BaseModel):
    """
    Local view of one account.

    `dirty` marks unsaved changes; it is not part of the persisted snapshot.
    """

    public_key: str
    block_height: int = Field(default=0, ge=0)
    balance: str = Field(default="0", pattern=UNSIGNED_AMOUNT_PATTERN)
    cursor: SyncCursor = Field(default_factory=SyncCursor)
    transactions: dict[str, TransactionRecord] = Field(default_factory=dict)
    dirty: bool = Field(default=False, exclude=True)

    def mark_dirty(self) -> None:
        self.dirty = True


class SuggestedParams(BaseModel):
    """
    Snapshot of the fee model and validity window used to build spends.

    `fee` is a per-byte rate unless `flat_fee` is set, in which case it is
    the whole fee.
    """

    fee: int = Field(default=0, ge=0)
    flat_fee: bool = False
    min_fee: int = Field(default=0, ge=0)
    first_round: int = Field(default=0, ge=0)
    last_round: int = Field(default=0, ge=0)
    genesis_id: str
    genesis_hash: str

    @classmethod
    def from_transaction_params(cls, params: TransactionParams) -> SuggestedParams:
        """
        Params in per-byte mode. Nodes do not report a flat fee, so flat mode
        is only ever set by a caller building SuggestedParams directly.
        """
        return cls(
            fee=params.fee,
            flat_fee=False,
            min_fee=params.min_fee,
            first_round=params.last_round,
            last_round=params.last_round + TX_VALIDITY_WINDOW,
            genesis_id=params.genesis_id,
            genesis_hash=params.genesis_hash,
        )


class SpendTarget(BaseModel):
    public_address: str | None = None
    native_amount: str | None = Field(default=None, pattern=UNSIGNED_AMOUNT_PATTERN)
    memo: str | None = None


class SpendRequest(BaseModel):
    spend_targets: list[SpendTarget] = Field(default_factory=list)
    tx_type: str = "pay"


class UnsignedTransaction(BaseModel):
    """
    Fee-checked, balance-checked transaction waiting for a signature.

    txid and block_height stay empty/zero until broadcast.
    """

    model_config = ConfigDict(frozen=True)

    encoded_tx: str  # hex of the unsigned payload
    recipient: str
    currency_code: str
    native_amount: str = Field(..., pattern=SIGNED_AMOUNT_PATTERN)
    network_fee: str = Field(..., pattern=UNSIGNED_AMOUNT_PATTERN)
    txid: str = ""
    block_height: int = 0

    @property
    def payload(self) -> bytes:
        return bytes.fromhex(self.encoded_tx)
