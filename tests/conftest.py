"""
Pytest configuration and fixtures for engine tests.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from acctengine.backends.base import AccountInformation, TransactionParams, TransactionsPage
from acctengine.config import NetworkInfo
from acctengine.wallet.engine import AccountEngine

OUR_ADDRESS = "OURADDRESSAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"
OTHER_ADDRESS = "OTHERADDRESSBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBBB"
GENESIS_ID = "testnet-v1.0"
GENESIS_HASH = "SGO1GKSzyE7IEPItTxCCywcz3r2OHJNbWHE3hXvYqw4="

NODE_URLS = ["https://node-a.test", "https://node-b.test"]
INDEXER_URLS = ["https://indexer-a.test", "https://indexer-b.test"]


def make_pay_tx(
    txid: str,
    confirmed_round: int,
    sender: str = OTHER_ADDRESS,
    receiver: str = OUR_ADDRESS,
    amount: int = 10_000,
    fee: int = 1_000,
) -> dict[str, Any]:
    """Raw indexer entry for a payment."""
    return {
        "id": txid,
        "fee": fee,
        "confirmed-round": confirmed_round,
        "round-time": 1_700_000_000 + confirmed_round,
        "sender": sender,
        "tx-type": "pay",
        "payment-transaction": {"amount": amount, "receiver": receiver},
    }


def make_page(
    transactions: list[dict[str, Any]],
    next_token: str | None = None,
) -> TransactionsPage:
    return TransactionsPage.model_validate(
        {"current-round": 100, "next-token": next_token, "transactions": transactions}
    )


def make_params(genesis_hash: str = GENESIS_HASH, fee: int = 0, last_round: int = 500):
    return TransactionParams.model_validate(
        {
            "fee": fee,
            "min-fee": 1000,
            "last-round": last_round,
            "genesis-id": GENESIS_ID,
            "genesis-hash": genesis_hash,
        }
    )


def make_node(url: str) -> MagicMock:
    node = MagicMock()
    node.url = url
    node.get_account_info = AsyncMock(
        return_value=AccountInformation(address=OUR_ADDRESS, amount=1_000_000, round=100)
    )
    node.get_transaction_params = AsyncMock(return_value=make_params())
    node.send_raw_transaction = AsyncMock(return_value="TXID123")
    node.close = AsyncMock()
    return node


def make_indexer(url: str) -> MagicMock:
    indexer = MagicMock()
    indexer.url = url
    indexer.lookup_account_transactions = AsyncMock(return_value=make_page([]))
    indexer.close = AsyncMock()
    return indexer


@pytest.fixture
def network_info() -> NetworkInfo:
    return NetworkInfo(
        algod_servers=NODE_URLS,
        indexer_servers=INDEXER_URLS,
        genesis_id=GENESIS_ID,
        genesis_hash=GENESIS_HASH,
        minimum_address_balance=100_000,
        minimum_tx_fee=1_000,
    )


@pytest.fixture
def nodes() -> dict[str, MagicMock]:
    return {url: make_node(url) for url in NODE_URLS}


@pytest.fixture
def indexers() -> dict[str, MagicMock]:
    return {url: make_indexer(url) for url in INDEXER_URLS}


@pytest.fixture
def callbacks() -> MagicMock:
    return MagicMock()


@pytest_asyncio.fixture
async def engine(
    network_info: NetworkInfo,
    nodes: dict[str, MagicMock],
    indexers: dict[str, MagicMock],
    callbacks: MagicMock,
) -> AsyncGenerator[AccountEngine]:
    engine = AccountEngine(
        public_key=OUR_ADDRESS,
        network_info=network_info,
        callbacks=callbacks,
        account_poll_interval=0.01,
        transaction_poll_interval=0.01,
        save_interval=0.01,
        node_factory=lambda url: nodes[url],
        history_factory=lambda url: indexers[url],
    )
    yield engine
    await engine.close()
