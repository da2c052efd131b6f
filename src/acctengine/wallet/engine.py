"""
Account-model wallet engine.

Keeps one account's balance, block height and transaction history in sync
with a set of equally trusted remote endpoints, and builds unsigned spends
against that local view.

Polled tasks (balance, suggested params, history) are soft: when every
endpoint fails they log and leave state untouched, and the next scheduled
run tries again. Broadcast is the one remote call whose failure reaches the
caller.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Protocol

import httpx
from loguru import logger
from pydantic import ValidationError

from acctengine.backends.algod import AlgodBackend
from acctengine.backends.base import (
    AccountInformation,
    HistoryBackend,
    NodeBackend,
    TransactionParams,
    TransactionsPage,
)
from acctengine.backends.indexer import IndexerBackend
from acctengine.config import NetworkInfo, Settings
from acctengine.constants import (
    ACCOUNT_POLL_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    SAVE_STATE_INTERVAL,
    TRANSACTION_POLL_INTERVAL,
)
from acctengine.failover import AllEndpointsFailedError, NetworkMismatchError, call_with_failover
from acctengine.mutex import TaskMutex
from acctengine.scheduler import PollingScheduler
from acctengine.storage import StateStore
from acctengine.wallet.callbacks import EngineCallbacks
from acctengine.wallet.history import IndexerTransaction, calc_sync_progress, process_transaction
from acctengine.wallet.models import (
    SpendRequest,
    SuggestedParams,
    SyncCursor,
    TransactionRecord,
    UnsignedTransaction,
    WalletState,
)
from acctengine.wallet.spend import build_spend, check_recipient_minimum_balance
from acctengine.wallet.transaction import PaymentTransaction


class TransactionSigner(Protocol):
    """Holds the key material; turns an unsigned payload into a signed one."""

    async def sign_transaction(self, payload: bytes) -> bytes: ...


class AccountEngine:
    """
    Sync and spend engine for a single account.

    All state mutation happens on the event loop through this object: the
    scheduler's tasks and user-initiated spends interleave only at await
    points. History passes are additionally serialized by a mutex, so a
    slow pass still walking pages is never overlapped by the next trigger.
    """

    def __init__(
        self,
        public_key: str,
        network_info: NetworkInfo,
        callbacks: EngineCallbacks,
        store: StateStore | None = None,
        account_poll_interval: float = ACCOUNT_POLL_INTERVAL,
        transaction_poll_interval: float = TRANSACTION_POLL_INTERVAL,
        save_interval: float = SAVE_STATE_INTERVAL,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        algod_token: str | None = None,
        indexer_token: str | None = None,
        node_factory: Callable[[str], NodeBackend] | None = None,
        history_factory: Callable[[str], HistoryBackend] | None = None,
    ):
        self.public_key = public_key
        self.network_info = network_info
        self.currency_code = network_info.currency_code
        self.minimum_address_balance = network_info.minimum_address_balance
        self.callbacks = callbacks
        self.store = store

        self.account_poll_interval = account_poll_interval
        self.transaction_poll_interval = transaction_poll_interval
        self.save_interval = save_interval

        # Shared by every default backend
        self.client = httpx.AsyncClient(timeout=request_timeout)
        self._node_factory = node_factory or (
            lambda url: AlgodBackend(url, client=self.client, api_token=algod_token)
        )
        self._history_factory = history_factory or (
            lambda url: IndexerBackend(url, client=self.client, api_token=indexer_token)
        )
        self._node_backends: dict[str, NodeBackend] = {}
        self._history_backends: dict[str, HistoryBackend] = {}

        loaded = store.load(public_key) if store is not None else None
        self.state = loaded or WalletState(public_key=public_key)

        self.suggested_params = SuggestedParams(
            min_fee=network_info.minimum_tx_fee,
            genesis_id=network_info.genesis_id,
            genesis_hash=network_info.genesis_hash,
        )

        self.scheduler = PollingScheduler()
        self.engine_on = False
        # Bumped on start/clear; a history pass only commits if it is unchanged
        self._epoch = 0
        self._query_tx_mutex = TaskMutex("query_transactions")
        self._transactions_changed: list[TransactionRecord] = []
        self._signed_payloads: set[str] = set()

        logger.info(
            f"Initialized {self.currency_code} engine for {public_key} "
            f"({len(network_info.algod_servers)} node, "
            f"{len(network_info.indexer_servers)} indexer endpoint(s))"
        )

    @classmethod
    def from_settings(
        cls,
        public_key: str,
        settings: Settings,
        callbacks: EngineCallbacks,
        store: StateStore | None = None,
    ) -> AccountEngine:
        return cls(
            public_key=public_key,
            network_info=settings.get_network_info(),
            callbacks=callbacks,
            store=store,
            account_poll_interval=settings.account_poll_interval,
            transaction_poll_interval=settings.transaction_poll_interval,
            save_interval=settings.save_interval,
            request_timeout=settings.request_timeout,
            algod_token=settings.algod_token or None,
            indexer_token=settings.indexer_token or None,
        )

    def _node(self, url: str) -> NodeBackend:
        if url not in self._node_backends:
            self._node_backends[url] = self._node_factory(url)
        return self._node_backends[url]

    def _history(self, url: str) -> HistoryBackend:
        if url not in self._history_backends:
            self._history_backends[url] = self._history_factory(url)
        return self._history_backends[url]

    # ------------------------------------------------------------------
    # Account sync
    # ------------------------------------------------------------------

    async def fetch_account_info(self, address: str) -> AccountInformation:
        info, _ = await call_with_failover(
            self.network_info.algod_servers,
            lambda url: self._node(url).get_account_info(address),
            label="account info",
        )
        return info

    async def get_recipient_balance(self, address: str) -> str:
        """Balance of any address, or the minimum balance if it cannot be fetched."""
        try:
            info = await self.fetch_account_info(address)
        except AllEndpointsFailedError as e:
            logger.debug(f"Recipient balance lookup failed for {address}: {e}")
            return str(self.minimum_address_balance)
        return str(info.amount)

    def get_balance(self) -> str:
        return self.state.balance

    def get_block_height(self) -> int:
        return self.state.block_height

    def get_display_public_seed(self) -> str:
        return self.public_key

    def update_balance(self, amount: int) -> bool:
        balance = str(amount)
        if balance == self.state.balance:
            return False
        self.state.balance = balance
        self.state.mark_dirty()
        self.callbacks.on_balance_changed(self.currency_code, balance)
        return True

    async def query_balance(self) -> bool:
        """
        Refresh balance and block height.

        Block height only ever moves forward: a lagging endpoint reporting an
        older round changes nothing and fires no notification.
        """
        try:
            info = await self.fetch_account_info(self.public_key)
        except AllEndpointsFailedError as e:
            logger.warning(f"query_balance error: {e}")
            return False

        changed = self.update_balance(info.amount)

        if info.round > self.state.block_height:
            self.state.block_height = info.round
            self.state.mark_dirty()
            self.callbacks.on_block_height_changed(info.round)
            changed = True

        return changed

    async def query_transaction_params(self) -> bool:
        async def fetch(url: str) -> TransactionParams:
            params = await self._node(url).get_transaction_params()
            if params.genesis_hash != self.network_info.genesis_hash:
                raise NetworkMismatchError(
                    f"Server genesis hash mismatch: expected {self.network_info.genesis_hash}, "
                    f"got {params.genesis_hash}"
                )
            return params

        try:
            params, _ = await call_with_failover(
                self.network_info.algod_servers, fetch, label="transaction params"
            )
        except AllEndpointsFailedError as e:
            logger.warning(f"query_transaction_params error: {e}")
            return False

        suggested = SuggestedParams.from_transaction_params(params)
        changed = suggested != self.suggested_params
        self.suggested_params = suggested
        return changed

    # ------------------------------------------------------------------
    # Transaction history sync
    # ------------------------------------------------------------------

    def add_transaction(self, tx: TransactionRecord) -> bool:
        """
        Insert a record or amend the stored one with the same txid.

        Returns True (and queues the record for the next transactions-changed
        batch) only if local state actually changed.
        """
        if not tx.txid:
            raise ValueError("Cannot store a transaction without a txid")

        existing = self.state.transactions.get(tx.txid)
        if existing is None:
            merged = tx
        else:
            merged = existing.model_copy(
                update={
                    "block_height": tx.block_height or existing.block_height,
                    "date": tx.date or existing.date,
                    "native_amount": tx.native_amount,
                    "network_fee": tx.network_fee,
                    "our_receive_addresses": tx.our_receive_addresses
                    or existing.our_receive_addresses,
                    "signed_tx": tx.signed_tx or existing.signed_tx,
                    "other_params": {**existing.other_params, **tx.other_params},
                }
            )
            if merged == existing:
                return False

        self.state.transactions[tx.txid] = merged
        self._transactions_changed.append(merged)
        return True

    def _flush_transactions_changed(self) -> bool:
        if not self._transactions_changed:
            return False
        changed = self._transactions_changed
        self._transactions_changed = []
        self.state.mark_dirty()
        self.callbacks.on_transactions_changed(changed)
        return True

    async def _fetch_transactions_page(
        self,
        min_round: int,
        next_token: str | None,
        endpoint: str | None,
    ) -> tuple[TransactionsPage, str]:
        # A continuation token is only valid on the indexer that issued it
        endpoints = [endpoint] if endpoint is not None else self.network_info.indexer_servers
        return await call_with_failover(
            endpoints,
            lambda url: self._history(url).lookup_account_transactions(
                self.public_key, min_round=min_round, next_token=next_token
            ),
            label="transaction history",
        )

    def _settle_merged(self, state: WalletState) -> None:
        """Announce records an unfinished pass merged, or drop them if state was replaced."""
        if state is self.state:
            self._flush_transactions_changed()
        else:
            self._transactions_changed.clear()

    async def query_transactions(self) -> bool:
        return await self._query_tx_mutex.run(self._query_transactions_inner)

    async def _query_transactions_inner(self) -> bool:
        state = self.state
        try:
            return await self._sync_history_pass()
        except asyncio.CancelledError:
            self._settle_merged(state)
            raise

    async def _sync_history_pass(self) -> bool:
        """
        One incremental history pass.

        Pages are walked newest first from the stored cursor round. The pass
        stops at the first transaction whose id equals the stored cursor id,
        since everything older has already been merged. The newest id seen
        becomes the new cursor once the pass completes.

        A restart or cache clear while the pass is paging stops it without
        committing the cursor. Stopping the engine alone does not.
        """
        epoch = self._epoch
        state = self.state
        cursor = state.cursor
        min_round = cursor.latest_round

        latest_txid: str | None = None
        latest_round = cursor.latest_round
        progress_round = min_round
        next_token: str | None = None
        endpoint: str | None = None
        continue_query = True

        while continue_query:
            try:
                page, endpoint = await self._fetch_transactions_page(
                    min_round, next_token, endpoint
                )
            except AllEndpointsFailedError as e:
                logger.warning(f"query_transactions error: {e}")
                self._settle_merged(state)
                return False

            if epoch != self._epoch:
                logger.info("Engine restarted during history sync, discarding pass")
                self._settle_merged(state)
                return False

            if not page.transactions:
                break

            for raw in page.transactions:
                try:
                    header = IndexerTransaction.model_validate(raw)
                except ValidationError as e:
                    logger.warning(f"Skipping malformed history entry: {e}")
                    continue

                if latest_txid is None:
                    # First entry of the pass is the newest one
                    latest_txid = header.id
                    latest_round = max(header.confirmed_round, cursor.latest_round)
                progress_round = header.confirmed_round

                if header.id == cursor.latest_txid:
                    continue_query = False
                    break

                try:
                    record = process_transaction(raw, self.public_key, self.currency_code)
                except ValidationError as e:
                    logger.warning(f"Failed to process transaction {header.id}: {e}")
                    continue
                if record is not None:
                    self.add_transaction(record)

            self.callbacks.on_sync_progress(
                calc_sync_progress(latest_round, progress_round, min_round)
            )

            next_token = page.next_token
            if not next_token:
                break

        changed = False
        if latest_txid is not None and latest_txid != cursor.latest_txid:
            self.state.cursor = SyncCursor(latest_txid=latest_txid, latest_round=latest_round)
            self.state.mark_dirty()
            changed = True
            logger.debug(f"History cursor advanced to {latest_txid} at round {latest_round}")

        self.callbacks.on_sync_progress(1.0)

        if self._flush_transactions_changed():
            changed = True

        return changed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_engine(self) -> None:
        if self.engine_on:
            return
        self.engine_on = True
        self._epoch += 1

        self.scheduler.schedule("query_balance", self.account_poll_interval, self.query_balance)
        self.scheduler.schedule(
            "query_transaction_params", self.account_poll_interval, self.query_transaction_params
        )
        self.scheduler.schedule(
            "query_transactions", self.transaction_poll_interval, self.query_transactions
        )
        self.scheduler.schedule("save_state", self.save_interval, self.save_state)
        logger.info(f"Engine started for {self.public_key}")

    async def kill_engine(self) -> None:
        self.engine_on = False
        await self.scheduler.stop()
        await self.save_state()
        logger.info(f"Engine stopped for {self.public_key}")

    def clear_blockchain_cache(self) -> None:
        """Drop everything learned from the network, keeping the account."""
        self._epoch += 1
        self.state = WalletState(public_key=self.public_key)
        self.state.mark_dirty()
        self._transactions_changed.clear()

    async def resync_blockchain(self) -> None:
        await self.kill_engine()
        self.clear_blockchain_cache()
        await self.start_engine()

    async def save_state(self) -> bool:
        """Hand the state to the store if it has unsaved changes."""
        if self.store is None or not self.state.dirty:
            return False
        self.store.save(self.state)
        self.state.dirty = False
        return True

    async def close(self) -> None:
        if self.engine_on:
            await self.kill_engine()
        else:
            # A pass that finished after kill_engine may have left changes
            await self.save_state()
        for backend in [*self._node_backends.values(), *self._history_backends.values()]:
            await backend.close()
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Spending
    # ------------------------------------------------------------------

    def make_spend(self, request: SpendRequest) -> UnsignedTransaction:
        return build_spend(
            request,
            sender=self.public_key,
            balance=int(self.state.balance),
            minimum_reserve=self.minimum_address_balance,
            params=self.suggested_params,
            minimum_fee=self.network_info.minimum_tx_fee,
            currency_code=self.currency_code,
        )

    async def sign_tx(
        self,
        unsigned: UnsignedTransaction,
        signer: TransactionSigner,
    ) -> TransactionRecord:
        if unsigned.encoded_tx in self._signed_payloads:
            raise ValueError("Unsigned transaction was already signed")

        raw_tx = PaymentTransaction.decode(unsigned.payload)
        await check_recipient_minimum_balance(
            self.get_recipient_balance,
            raw_tx.amount,
            unsigned.recipient,
            self.minimum_address_balance,
        )

        signed = await signer.sign_transaction(unsigned.payload)
        self._signed_payloads.add(unsigned.encoded_tx)

        return TransactionRecord(
            currency_code=unsigned.currency_code,
            native_amount=unsigned.native_amount,
            network_fee=unsigned.network_fee,
            signed_tx=signed.hex(),
            other_params={"encoded_tx": unsigned.encoded_tx, "recipient": unsigned.recipient},
        )

    async def broadcast_tx(self, tx: TransactionRecord) -> TransactionRecord:
        """
        Submit a signed transaction.

        Raises:
            AllEndpointsFailedError: If no node accepted it
        """
        if not tx.signed_tx:
            raise ValueError("Transaction is not signed")
        signed = bytes.fromhex(tx.signed_tx)

        try:
            txid, url = await call_with_failover(
                self.network_info.algod_servers,
                lambda url: self._node(url).send_raw_transaction(signed),
                label="broadcast",
            )
        except AllEndpointsFailedError as e:
            logger.error(f"FAILURE broadcast_tx failed: {e}")
            raise

        broadcast = tx.model_copy(update={"txid": txid, "date": time.time()})
        logger.info(
            f"SUCCESS broadcast_tx {txid} via {url}: {broadcast.native_amount} "
            f"{broadcast.currency_code} (fee {broadcast.network_fee})"
        )
        return broadcast

    def save_tx(self, tx: TransactionRecord) -> None:
        """Record a broadcast transaction locally until history confirms it."""
        self.add_transaction(tx)
        self._flush_transactions_changed()
