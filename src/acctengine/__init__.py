"""
acctengine - Sync and spend core for account-model ledger wallets

Provides multi-endpoint failover, incremental history sync, polling and
spend construction for a single account.
"""

__version__ = "0.3.0"

from acctengine.config import NetworkInfo, NetworkType, Settings, get_network_info
from acctengine.failover import (
    AllEndpointsFailedError,
    NetworkMismatchError,
    async_waterfall,
    call_with_failover,
)
from acctengine.mutex import TaskMutex
from acctengine.scheduler import PollingScheduler
from acctengine.storage import JsonStateStore, StateStore
from acctengine.wallet.engine import AccountEngine, TransactionSigner
from acctengine.wallet.models import (
    SpendRequest,
    SpendTarget,
    SuggestedParams,
    SyncCursor,
    TransactionRecord,
    UnsignedTransaction,
    WalletState,
)
from acctengine.wallet.spend import (
    InsufficientFundsError,
    InvalidSpendShapeError,
    MissingAmountError,
    MissingRecipientError,
    RecipientMinimumBalanceError,
    SpendError,
    UnrecognizedTransactionTypeError,
)

__all__ = [
    "AccountEngine",
    "AllEndpointsFailedError",
    "InsufficientFundsError",
    "InvalidSpendShapeError",
    "JsonStateStore",
    "MissingAmountError",
    "MissingRecipientError",
    "NetworkInfo",
    "NetworkMismatchError",
    "NetworkType",
    "PollingScheduler",
    "RecipientMinimumBalanceError",
    "Settings",
    "SpendError",
    "SpendRequest",
    "SpendTarget",
    "StateStore",
    "SuggestedParams",
    "SyncCursor",
    "TaskMutex",
    "TransactionRecord",
    "TransactionSigner",
    "UnrecognizedTransactionTypeError",
    "UnsignedTransaction",
    "WalletState",
    "async_waterfall",
    "call_with_failover",
    "get_network_info",
]
