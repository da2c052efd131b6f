"""
Conversion of remote history entries into TransactionRecords.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from acctengine.wallet.models import TransactionRecord


class IndexerTransaction(BaseModel):
    """Fields common to every transaction type in an indexer response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    fee: int = Field(..., ge=0)
    confirmed_round: int = Field(..., ge=0, alias="confirmed-round")
    round_time: int = Field(default=0, ge=0, alias="round-time")
    sender: str
    tx_type: str = Field(..., alias="tx-type")


class PaymentFields(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: int = Field(..., ge=0)
    receiver: str


class IndexerPayTransaction(IndexerTransaction):
    payment_transaction: PaymentFields = Field(..., alias="payment-transaction")


def process_transaction(
    raw: dict[str, Any],
    our_address: str,
    currency_code: str,
) -> TransactionRecord | None:
    """
    Convert one raw history entry.

    Returns None for transaction types the wallet does not track.

    Raises:
        pydantic.ValidationError: If the entry does not match the schema
    """
    tx = IndexerTransaction.model_validate(raw)
    if tx.tx_type != "pay":
        return None

    payment = IndexerPayTransaction.model_validate(raw).payment_transaction
    our_receive_addresses: list[str] = []

    if tx.sender == our_address:
        native_amount = -(payment.amount + tx.fee)
        network_fee = tx.fee
    else:
        native_amount = payment.amount
        network_fee = 0
        our_receive_addresses.append(our_address)

    return TransactionRecord(
        txid=tx.id,
        block_height=tx.confirmed_round,
        date=float(tx.round_time),
        currency_code=currency_code,
        native_amount=str(native_amount),
        network_fee=str(network_fee),
        our_receive_addresses=our_receive_addresses,
        signed_tx="",
    )


def calc_sync_progress(latest_round: int, progress_round: int, min_round: int) -> float:
    """
    Fraction of the round span [min_round, latest_round] already scanned.

    History is walked newest first, so progress grows as progress_round
    moves down from latest_round towards min_round.
    """
    span = latest_round - min_round
    if span <= 0:
        return 1.0
    progress = (latest_round - progress_round) / span
    return min(1.0, max(0.0, progress))
