"""
Tests for incremental transaction history sync.
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, call

import httpx
import pytest

from acctengine.wallet.engine import AccountEngine
from acctengine.wallet.history import calc_sync_progress, process_transaction
from acctengine.wallet.models import SyncCursor, TransactionRecord
from tests.conftest import (
    INDEXER_URLS,
    OTHER_ADDRESS,
    OUR_ADDRESS,
    make_page,
    make_pay_tx,
)

INDEXER_A, INDEXER_B = INDEXER_URLS


def three_tx_page():
    return make_page(
        [
            make_pay_tx("tx3", 30),
            make_pay_tx("tx2", 20, sender=OUR_ADDRESS, receiver=OTHER_ADDRESS, amount=5_000),
            make_pay_tx("tx1", 10),
        ]
    )


class TestQueryTransactions:
    @pytest.mark.asyncio
    async def test_first_pass_merges_and_sets_cursor(
        self,
        engine: AccountEngine,
        indexers: dict[str, MagicMock],
        callbacks: MagicMock,
    ) -> None:
        indexers[INDEXER_A].lookup_account_transactions.return_value = three_tx_page()

        changed = await engine.query_transactions()

        assert changed is True
        assert set(engine.state.transactions) == {"tx1", "tx2", "tx3"}
        assert engine.state.cursor == SyncCursor(latest_txid="tx3", latest_round=30)
        assert engine.state.dirty

        callbacks.on_transactions_changed.assert_called_once()
        (batch,) = callbacks.on_transactions_changed.call_args.args
        assert [tx.txid for tx in batch] == ["tx3", "tx2", "tx1"]

        indexers[INDEXER_A].lookup_account_transactions.assert_awaited_once_with(
            OUR_ADDRESS, min_round=0, next_token=None
        )

    @pytest.mark.asyncio
    async def test_second_pass_is_idempotent(
        self,
        engine: AccountEngine,
        indexers: dict[str, MagicMock],
        callbacks: MagicMock,
    ) -> None:
        """Re-running with no new history changes nothing and notifies nobody."""
        indexers[INDEXER_A].lookup_account_transactions.return_value = three_tx_page()
        await engine.query_transactions()
        engine.state.dirty = False
        snapshot = engine.state.model_copy(deep=True)
        callbacks.reset_mock()

        changed = await engine.query_transactions()

        assert changed is False
        assert engine.state.cursor == snapshot.cursor
        assert engine.state.transactions == snapshot.transactions
        assert not engine.state.dirty
        callbacks.on_transactions_changed.assert_not_called()
        # The next pass resumes from the cursor round
        indexers[INDEXER_A].lookup_account_transactions.assert_awaited_with(
            OUR_ADDRESS, min_round=30, next_token=None
        )

    @pytest.mark.asyncio
    async def test_stops_at_stored_cursor(
        self, engine: AccountEngine, indexers: dict[str, MagicMock]
    ) -> None:
        """Only entries newer than the stored cursor id are merged."""
        engine.state.cursor = SyncCursor(latest_txid="tx2", latest_round=40)
        indexers[INDEXER_A].lookup_account_transactions.return_value = make_page(
            [make_pay_tx("tx3", 50), make_pay_tx("tx2", 40), make_pay_tx("tx1", 30)]
        )

        assert await engine.query_transactions() is True

        assert set(engine.state.transactions) == {"tx3"}
        assert engine.state.cursor == SyncCursor(latest_txid="tx3", latest_round=50)
        indexers[INDEXER_A].lookup_account_transactions.assert_awaited_once_with(
            OUR_ADDRESS, min_round=40, next_token=None
        )

    @pytest.mark.asyncio
    async def test_new_transaction_on_top_of_cursor(
        self, engine: AccountEngine, indexers: dict[str, MagicMock], callbacks: MagicMock
    ) -> None:
        lookup = indexers[INDEXER_A].lookup_account_transactions
        lookup.return_value = three_tx_page()
        await engine.query_transactions()
        callbacks.reset_mock()

        lookup.return_value = make_page([make_pay_tx("tx4", 40), make_pay_tx("tx3", 30)])
        assert await engine.query_transactions() is True

        assert engine.state.cursor == SyncCursor(latest_txid="tx4", latest_round=40)
        (batch,) = callbacks.on_transactions_changed.call_args.args
        assert [tx.txid for tx in batch] == ["tx4"]

    @pytest.mark.asyncio
    async def test_amounts_by_direction(
        self, engine: AccountEngine, indexers: dict[str, MagicMock]
    ) -> None:
        indexers[INDEXER_A].lookup_account_transactions.return_value = three_tx_page()

        await engine.query_transactions()

        incoming = engine.state.transactions["tx3"]
        assert incoming.native_amount == "10000"
        assert incoming.network_fee == "0"
        assert incoming.our_receive_addresses == [OUR_ADDRESS]
        assert incoming.block_height == 30

        outgoing = engine.state.transactions["tx2"]
        assert outgoing.native_amount == "-6000"
        assert outgoing.network_fee == "1000"
        assert outgoing.our_receive_addresses == []

    @pytest.mark.asyncio
    async def test_empty_history(
        self,
        engine: AccountEngine,
        indexers: dict[str, MagicMock],
        callbacks: MagicMock,
    ) -> None:
        changed = await engine.query_transactions()

        assert changed is False
        assert engine.state.cursor == SyncCursor()
        callbacks.on_sync_progress.assert_called_once_with(1.0)
        callbacks.on_transactions_changed.assert_not_called()

    @pytest.mark.asyncio
    async def test_pagination_sticks_to_first_server(
        self, engine: AccountEngine, indexers: dict[str, MagicMock]
    ) -> None:
        """Continuation pages are only requested from the server that issued the token."""
        indexers[INDEXER_A].lookup_account_transactions.side_effect = [
            make_page([make_pay_tx("tx3", 30), make_pay_tx("tx2", 20)], next_token="page-2"),
            make_page([make_pay_tx("tx1", 10)]),
        ]

        await engine.query_transactions()

        assert set(engine.state.transactions) == {"tx1", "tx2", "tx3"}
        assert indexers[INDEXER_A].lookup_account_transactions.await_args_list == [
            call(OUR_ADDRESS, min_round=0, next_token=None),
            call(OUR_ADDRESS, min_round=0, next_token="page-2"),
        ]
        indexers[INDEXER_B].lookup_account_transactions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pagination_follows_fallback_server(
        self, engine: AccountEngine, indexers: dict[str, MagicMock]
    ) -> None:
        indexers[INDEXER_A].lookup_account_transactions.side_effect = httpx.ConnectError(
            "refused"
        )
        indexers[INDEXER_B].lookup_account_transactions.side_effect = [
            make_page([make_pay_tx("tx2", 20)], next_token="page-2"),
            make_page([make_pay_tx("tx1", 10)]),
        ]

        await engine.query_transactions()

        assert set(engine.state.transactions) == {"tx1", "tx2"}
        indexers[INDEXER_A].lookup_account_transactions.assert_awaited_once()
        assert indexers[INDEXER_B].lookup_account_transactions.await_count == 2

    @pytest.mark.asyncio
    async def test_sticky_server_failure_keeps_cursor(
        self, engine: AccountEngine, indexers: dict[str, MagicMock]
    ) -> None:
        """Losing the paging server mid-pass never switches servers or commits the cursor."""
        indexers[INDEXER_A].lookup_account_transactions.side_effect = [
            make_page([make_pay_tx("tx3", 30)], next_token="page-2"),
            httpx.ReadTimeout("timed out"),
        ]

        changed = await engine.query_transactions()

        assert changed is False
        assert engine.state.cursor == SyncCursor()
        assert "tx3" in engine.state.transactions
        indexers[INDEXER_B].lookup_account_transactions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_all_servers_down(
        self, engine: AccountEngine, indexers: dict[str, MagicMock]
    ) -> None:
        for indexer in indexers.values():
            indexer.lookup_account_transactions.side_effect = httpx.ConnectError("refused")

        assert await engine.query_transactions() is False
        assert engine.state.transactions == {}
        assert not engine.state.dirty

    @pytest.mark.asyncio
    async def test_malformed_entry_skipped(
        self, engine: AccountEngine, indexers: dict[str, MagicMock]
    ) -> None:
        broken = {"id": "broken", "tx-type": "pay"}
        indexers[INDEXER_A].lookup_account_transactions.return_value = make_page(
            [broken, make_pay_tx("tx2", 20), make_pay_tx("tx1", 10)]
        )

        await engine.query_transactions()

        assert set(engine.state.transactions) == {"tx1", "tx2"}
        assert engine.state.cursor.latest_txid == "tx2"

    @pytest.mark.asyncio
    async def test_non_payment_skipped(
        self, engine: AccountEngine, indexers: dict[str, MagicMock]
    ) -> None:
        asset_transfer = {
            "id": "axfer1",
            "fee": 1_000,
            "confirmed-round": 40,
            "sender": OUR_ADDRESS,
            "tx-type": "axfer",
        }
        indexers[INDEXER_A].lookup_account_transactions.return_value = make_page(
            [asset_transfer, make_pay_tx("tx1", 10)]
        )

        await engine.query_transactions()

        assert set(engine.state.transactions) == {"tx1"}
        assert engine.state.cursor == SyncCursor(latest_txid="axfer1", latest_round=40)

    @pytest.mark.asyncio
    async def test_progress_reported_per_page(
        self,
        engine: AccountEngine,
        indexers: dict[str, MagicMock],
        callbacks: MagicMock,
    ) -> None:
        indexers[INDEXER_A].lookup_account_transactions.side_effect = [
            make_page([make_pay_tx("tx3", 30), make_pay_tx("tx2", 20)], next_token="page-2"),
            make_page([make_pay_tx("tx1", 10)]),
        ]

        await engine.query_transactions()

        values = [c.args[0] for c in callbacks.on_sync_progress.call_args_list]
        assert len(values) == 3
        assert values[0] == pytest.approx(10 / 30)
        assert values[1] == pytest.approx(20 / 30)
        assert values[-1] == 1.0
        assert all(0.0 <= v <= 1.0 for v in values)

    @pytest.mark.asyncio
    async def test_restart_during_pass_discards_results(
        self, engine: AccountEngine, indexers: dict[str, MagicMock]
    ) -> None:
        async def lookup(address, min_round=0, next_token=None):
            engine.clear_blockchain_cache()
            return three_tx_page()

        indexers[INDEXER_A].lookup_account_transactions.side_effect = lookup

        changed = await engine.query_transactions()

        assert changed is False
        assert engine.state.transactions == {}
        assert engine.state.cursor == SyncCursor()

    @pytest.mark.asyncio
    async def test_kill_during_pass_still_commits(
        self,
        engine: AccountEngine,
        indexers: dict[str, MagicMock],
        callbacks: MagicMock,
    ) -> None:
        """Stopping the engine without restarting lets an in-flight pass finish."""
        pages = [
            make_page([make_pay_tx("tx3", 30)], next_token="page-2"),
            make_page([make_pay_tx("tx2", 20)]),
        ]

        async def lookup(address, min_round=0, next_token=None):
            if next_token == "page-2":
                await engine.kill_engine()
            return pages.pop(0)

        indexers[INDEXER_A].lookup_account_transactions.side_effect = lookup

        changed = await engine.query_transactions()

        assert changed is True
        assert engine.state.cursor == SyncCursor(latest_txid="tx3", latest_round=30)
        assert set(engine.state.transactions) == {"tx2", "tx3"}
        assert engine.state.dirty
        (batch,) = callbacks.on_transactions_changed.call_args.args
        assert [tx.txid for tx in batch] == ["tx3", "tx2"]

    @pytest.mark.asyncio
    async def test_restart_during_pass_announces_merged(
        self,
        engine: AccountEngine,
        indexers: dict[str, MagicMock],
        callbacks: MagicMock,
    ) -> None:
        """After a restart the cursor is not committed, but merged records are not lost."""
        calls = 0

        async def lookup(address, min_round=0, next_token=None):
            nonlocal calls
            calls += 1
            if calls == 1:
                return make_page([make_pay_tx("tx3", 30)], next_token="page-2")
            if calls == 2:
                await engine.kill_engine()
                await engine.start_engine()
                return make_page([make_pay_tx("tx2", 20)])
            return make_page([])

        indexers[INDEXER_A].lookup_account_transactions.side_effect = lookup

        changed = await engine.query_transactions()

        assert changed is False
        assert engine.state.cursor == SyncCursor()
        assert set(engine.state.transactions) == {"tx3"}
        assert engine.state.dirty
        callbacks.on_transactions_changed.assert_called_once()
        (batch,) = callbacks.on_transactions_changed.call_args.args
        assert [tx.txid for tx in batch] == ["tx3"]
        await engine.kill_engine()

    @pytest.mark.asyncio
    async def test_restart_then_failure_does_not_leak_batch(
        self,
        engine: AccountEngine,
        indexers: dict[str, MagicMock],
        callbacks: MagicMock,
    ) -> None:
        """Records merged before a restart are announced once, not carried into the next pass."""
        calls = 0

        async def lookup(address, min_round=0, next_token=None):
            nonlocal calls
            calls += 1
            if calls == 1:
                return make_page([make_pay_tx("tx3", 30)], next_token="page-2")
            if calls == 2:
                await engine.start_engine()
                raise httpx.ReadTimeout("timed out")
            return make_page([make_pay_tx("tx9", 90)])

        indexers[INDEXER_A].lookup_account_transactions.side_effect = lookup

        assert await engine.query_transactions() is False
        assert engine._transactions_changed == []
        callbacks.on_transactions_changed.assert_called_once()
        await engine.kill_engine()

        callbacks.reset_mock()
        await engine.query_transactions()
        for batch_call in callbacks.on_transactions_changed.call_args_list:
            assert "tx3" not in [tx.txid for tx in batch_call.args[0]]

    @pytest.mark.asyncio
    async def test_cancelled_pass_announces_merged(
        self,
        engine: AccountEngine,
        indexers: dict[str, MagicMock],
        callbacks: MagicMock,
    ) -> None:
        second_page_requested = asyncio.Event()

        async def lookup(address, min_round=0, next_token=None):
            if next_token is None:
                return make_page([make_pay_tx("tx3", 30)], next_token="page-2")
            second_page_requested.set()
            await asyncio.Event().wait()

        indexers[INDEXER_A].lookup_account_transactions.side_effect = lookup

        task = asyncio.create_task(engine.query_transactions())
        await second_page_requested.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert engine.state.cursor == SyncCursor()
        assert engine.state.dirty
        (batch,) = callbacks.on_transactions_changed.call_args.args
        assert [tx.txid for tx in batch] == ["tx3"]

    @pytest.mark.asyncio
    async def test_passes_never_overlap(
        self, engine: AccountEngine, indexers: dict[str, MagicMock]
    ) -> None:
        active = 0
        max_active = 0

        async def lookup(address, min_round=0, next_token=None):
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.01)
            active -= 1
            return three_tx_page()

        indexers[INDEXER_A].lookup_account_transactions.side_effect = lookup

        results = await asyncio.gather(engine.query_transactions(), engine.query_transactions())

        assert max_active == 1
        assert results == [True, False]
        assert engine.state.cursor.latest_txid == "tx3"


class TestAddTransaction:
    def test_amend_keeps_signed_payload(self, engine: AccountEngine) -> None:
        """History confirming a locally broadcast transaction keeps our signed bytes."""
        local = TransactionRecord(
            txid="tx1",
            date=123.0,
            currency_code="ALGO",
            native_amount="-11000",
            network_fee="1000",
            signed_tx="deadbeef",
        )
        engine.save_tx(local)

        confirmed = process_transaction(
            make_pay_tx("tx1", 10, sender=OUR_ADDRESS, receiver=OTHER_ADDRESS),
            OUR_ADDRESS,
            "ALGO",
        )
        assert confirmed is not None
        assert engine.add_transaction(confirmed) is True

        stored = engine.state.transactions["tx1"]
        assert stored.signed_tx == "deadbeef"
        assert stored.block_height == 10
        assert stored.native_amount == "-11000"
        assert len(engine.state.transactions) == 1

    def test_unchanged_record_not_queued(self, engine: AccountEngine) -> None:
        record = process_transaction(make_pay_tx("tx1", 10), OUR_ADDRESS, "ALGO")
        assert record is not None

        assert engine.add_transaction(record) is True
        assert engine.add_transaction(record) is False

    def test_requires_txid(self, engine: AccountEngine) -> None:
        record = TransactionRecord(currency_code="ALGO", native_amount="1")

        with pytest.raises(ValueError, match="without a txid"):
            engine.add_transaction(record)


class TestSyncProgress:
    def test_equal_rounds_is_complete(self) -> None:
        assert calc_sync_progress(5, 5, 5) == 1.0

    def test_inverted_span_is_complete(self) -> None:
        assert calc_sync_progress(10, 5, 20) == 1.0

    def test_clamped(self) -> None:
        assert calc_sync_progress(30, 40, 0) == 0.0
        assert calc_sync_progress(30, -10, 0) == 1.0

    def test_midway(self) -> None:
        assert calc_sync_progress(100, 75, 50) == pytest.approx(0.5)
