"""
Spend construction: validation, fee estimation and balance checks.

build_spend() is pure: it reads a balance and a params snapshot and either
returns an UnsignedTransaction or raises a SpendError. Nothing is mutated,
so a rejected spend leaves the wallet exactly as it was.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from loguru import logger

from acctengine.wallet.models import SpendRequest, SuggestedParams, UnsignedTransaction
from acctengine.wallet.transaction import PaymentTransaction, make_payment_transaction

SUPPORTED_TX_TYPES = frozenset({"pay"})


class SpendError(Exception):
    """Base class for spend validation failures."""


class InvalidSpendShapeError(SpendError):
    pass


class MissingRecipientError(SpendError):
    pass


class MissingAmountError(SpendError):
    pass


class UnrecognizedTransactionTypeError(SpendError):
    pass


class InsufficientFundsError(SpendError):
    def __init__(self, required: int, spendable: int):
        self.required = required
        self.spendable = spendable
        super().__init__(f"Insufficient funds: need {required}, spendable {spendable}")


class RecipientMinimumBalanceError(SpendError):
    """Recipient would stay below the ledger's minimum account balance."""

    def __init__(self, recipient: str, minimum_amount: int):
        self.recipient = recipient
        self.minimum_amount = minimum_amount
        super().__init__(
            f"Recipient {recipient} is not activated; send at least {minimum_amount}"
        )


def calc_fee(tx: PaymentTransaction, params: SuggestedParams, minimum_fee: int) -> int:
    """
    Fee for a transaction under the current params.

    Per-byte mode charges rate x estimated signed size; flat mode charges the
    suggested fee as is. Either way the result never drops below the network
    minimum.
    """
    floor = max(minimum_fee, params.min_fee)
    if params.flat_fee:
        return max(params.fee, floor)
    return max(params.fee * tx.estimate_size(), floor)


def build_spend(
    request: SpendRequest,
    sender: str,
    balance: int,
    minimum_reserve: int,
    params: SuggestedParams,
    minimum_fee: int,
    currency_code: str,
) -> UnsignedTransaction:
    spendable = balance - minimum_reserve

    if len(request.spend_targets) != 1:
        raise InvalidSpendShapeError(
            f"Exactly one spend target allowed, got {len(request.spend_targets)}"
        )

    target = request.spend_targets[0]
    if not target.public_address:
        raise MissingRecipientError("Spend target is missing a recipient address")
    if target.native_amount is None:
        raise MissingAmountError("Spend target is missing an amount")

    if request.tx_type not in SUPPORTED_TX_TYPES:
        raise UnrecognizedTransactionTypeError(
            f"Unrecognized transaction type: {request.tx_type}"
        )

    amount = int(target.native_amount)
    note = target.memo.encode() if target.memo else None

    raw_tx = make_payment_transaction(
        sender=sender,
        receiver=target.public_address,
        amount=amount,
        params=params,
        note=note,
    )
    fee = calc_fee(raw_tx, params, minimum_fee)
    native_amount = -(amount + fee)

    if abs(native_amount) > spendable:
        raise InsufficientFundsError(required=abs(native_amount), spendable=spendable)

    raw_tx = raw_tx.with_fee(fee)
    logger.debug(
        f"Built spend of {amount} to {target.public_address} "
        f"(fee {fee}, net {native_amount})"
    )

    return UnsignedTransaction(
        encoded_tx=raw_tx.encode().hex(),
        recipient=target.public_address,
        currency_code=currency_code,
        native_amount=str(native_amount),
        network_fee=str(fee),
    )


async def check_recipient_minimum_balance(
    get_recipient_balance: Callable[[str], Awaitable[str]],
    native_amount: int,
    recipient: str,
    minimum_balance: int,
) -> None:
    """
    Reject payments that would leave the recipient below the minimum balance.

    get_recipient_balance should fall back to a value that passes this check
    when the lookup fails, so an unreachable network never blocks a spend.
    """
    recipient_balance = int(await get_recipient_balance(recipient))
    if recipient_balance + native_amount < minimum_balance:
        raise RecipientMinimumBalanceError(recipient, minimum_balance - recipient_balance)
