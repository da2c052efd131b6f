"""
Ledger protocol constants and engine polling defaults.

Amounts are in the ledger's smallest unit (microAlgos for Algorand):
- MINIMUM_ADDRESS_BALANCE: reserve every account must keep to stay open
- MINIMUM_TX_FEE: network floor for any transaction fee
"""

from __future__ import annotations

# Protocol minimum balance for a plain account (0.1 ALGO)
MINIMUM_ADDRESS_BALANCE = 100_000

# Network minimum fee per transaction (0.001 ALGO)
MINIMUM_TX_FEE = 1_000

# Number of rounds a transaction stays valid after its first valid round
TX_VALIDITY_WINDOW = 1_000

# Bytes a detached ed25519 signature and its envelope add to an unsigned payload.
# Used for fee estimation before the transaction is signed.
SIGNATURE_OVERHEAD_BYTES = 75

# Polling intervals (seconds)
ACCOUNT_POLL_INTERVAL = 5.0
TRANSACTION_POLL_INTERVAL = 3.0
SAVE_STATE_INTERVAL = 10.0

# Timeout for a single HTTP request to one endpoint (seconds)
DEFAULT_REQUEST_TIMEOUT = 30.0

DEFAULT_CURRENCY_CODE = "ALGO"
