"""
Notification sink the engine reports to.
"""

from __future__ import annotations

from typing import Protocol

from loguru import logger

from acctengine.wallet.models import TransactionRecord


class EngineCallbacks(Protocol):
    """Owner-side hooks. Implementations must not block."""

    def on_block_height_changed(self, block_height: int) -> None: ...

    def on_balance_changed(self, currency_code: str, balance: str) -> None: ...

    def on_transactions_changed(self, transactions: list[TransactionRecord]) -> None: ...

    def on_sync_progress(self, progress: float) -> None: ...


class LoggingCallbacks:
    """Callbacks that only log, for headless use."""

    def on_block_height_changed(self, block_height: int) -> None:
        logger.info(f"Block height: {block_height}")

    def on_balance_changed(self, currency_code: str, balance: str) -> None:
        logger.info(f"Balance: {balance} {currency_code}")

    def on_transactions_changed(self, transactions: list[TransactionRecord]) -> None:
        for tx in transactions:
            logger.info(
                f"Transaction {tx.txid}: {tx.native_amount} {tx.currency_code} "
                f"(fee {tx.network_fee}, height {tx.block_height})"
            )

    def on_sync_progress(self, progress: float) -> None:
        logger.debug(f"History sync progress: {progress:.0%}")
