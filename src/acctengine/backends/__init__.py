"""
Ledger backend implementations.

Available backends:
- AlgodBackend: account info, suggested params and submission (node REST API)
- IndexerBackend: paginated account transaction history (indexer REST API)

Each backend wraps a single endpoint; the engine runs failover across the
configured endpoint sets.
"""

from acctengine.backends.algod import AlgodBackend
from acctengine.backends.base import (
    AccountInformation,
    HistoryBackend,
    NodeBackend,
    SubmitResponse,
    TransactionParams,
    TransactionsPage,
)
from acctengine.backends.indexer import IndexerBackend

__all__ = [
    "AccountInformation",
    "AlgodBackend",
    "HistoryBackend",
    "IndexerBackend",
    "NodeBackend",
    "SubmitResponse",
    "TransactionParams",
    "TransactionsPage",
]
