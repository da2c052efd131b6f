"""
Unsigned payment payloads.

The payload is canonical JSON (sorted keys, no whitespace) so that encoding
is deterministic and the size used for fee estimation is exactly the size
handed to the signer.
"""

from __future__ import annotations

import json
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from acctengine.constants import SIGNATURE_OVERHEAD_BYTES
from acctengine.wallet.models import SuggestedParams


class PaymentTransaction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["pay"] = "pay"
    sender: str = Field(..., min_length=1)
    receiver: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0)
    fee: int = Field(default=0, ge=0)
    first_valid: int = Field(default=0, ge=0)
    last_valid: int = Field(default=0, ge=0)
    genesis_id: str
    genesis_hash: str
    note: str | None = None  # hex

    def encode(self) -> bytes:
        return json.dumps(
            self.model_dump(exclude_none=True), sort_keys=True, separators=(",", ":")
        ).encode()

    def estimate_size(self) -> int:
        """Size in bytes of the transaction once signed."""
        return len(self.encode()) + SIGNATURE_OVERHEAD_BYTES

    def with_fee(self, fee: int) -> PaymentTransaction:
        return self.model_copy(update={"fee": fee})

    @classmethod
    def decode(cls, payload: bytes) -> PaymentTransaction:
        return cls.model_validate_json(payload)


def make_payment_transaction(
    sender: str,
    receiver: str,
    amount: int,
    params: SuggestedParams,
    note: bytes | None = None,
) -> PaymentTransaction:
    """Build a payment using the current suggested params, fee not yet set."""
    return PaymentTransaction(
        sender=sender,
        receiver=receiver,
        amount=amount,
        fee=params.fee,
        first_valid=params.first_round,
        last_valid=params.last_round,
        genesis_id=params.genesis_id,
        genesis_hash=params.genesis_hash,
        note=note.hex() if note else None,
    )
