"""
Engine configuration: per-network endpoint sets and environment settings.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from acctengine.constants import (
    ACCOUNT_POLL_INTERVAL,
    DEFAULT_CURRENCY_CODE,
    DEFAULT_REQUEST_TIMEOUT,
    MINIMUM_ADDRESS_BALANCE,
    MINIMUM_TX_FEE,
    SAVE_STATE_INTERVAL,
    TRANSACTION_POLL_INTERVAL,
)


class NetworkType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    BETANET = "betanet"


def normalize_servers(servers: list[str]) -> list[str]:
    """Strip whitespace and trailing slashes, dropping empty entries."""
    normalized = [s.strip().rstrip("/") for s in servers if s.strip()]
    if not normalized:
        raise ValueError("At least one server URL is required")
    return normalized


class NetworkInfo(BaseModel):
    """
    Static description of one ledger network.

    Endpoint order is a priority hint only: any server in a list may answer
    any request of its capability.
    """

    currency_code: str = DEFAULT_CURRENCY_CODE
    # Account info, suggested params and transaction submission
    algod_servers: list[str] = Field(..., min_length=1)
    # Transaction history index
    indexer_servers: list[str] = Field(..., min_length=1)
    genesis_id: str
    genesis_hash: str
    minimum_address_balance: int = Field(default=MINIMUM_ADDRESS_BALANCE, ge=0)
    minimum_tx_fee: int = Field(default=MINIMUM_TX_FEE, ge=0)

    @field_validator("algod_servers", "indexer_servers")
    @classmethod
    def validate_servers(cls, v: list[str]) -> list[str]:
        return normalize_servers(v)


NETWORK_PRESETS: dict[NetworkType, NetworkInfo] = {
    NetworkType.MAINNET: NetworkInfo(
        algod_servers=["https://mainnet-api.algonode.cloud"],
        indexer_servers=["https://mainnet-idx.algonode.cloud"],
        genesis_id="mainnet-v1.0",
        genesis_hash="wGHE2Pwdvd7S12BL5FaOP20EGYesN73ktiC1qzkkit8=",
    ),
    NetworkType.TESTNET: NetworkInfo(
        algod_servers=["https://testnet-api.algonode.cloud"],
        indexer_servers=["https://testnet-idx.algonode.cloud"],
        genesis_id="testnet-v1.0",
        genesis_hash="SGO1GKSzyE7IEPItTxCCywcz3r2OHJNbWHE3hXvYqw4=",
    ),
    NetworkType.BETANET: NetworkInfo(
        algod_servers=["https://betanet-api.algonode.cloud"],
        indexer_servers=["https://betanet-idx.algonode.cloud"],
        genesis_id="betanet-v1.0",
        genesis_hash="mFgazF+2uRS1tMiL9dsj01hJGySEmPN28B/TjjvpVW0=",
    ),
}


def get_network_info(network: NetworkType) -> NetworkInfo:
    """Get a copy of the preset for a given network."""
    return NETWORK_PRESETS[network].model_copy(deep=True)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ACCT_ENGINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    network: NetworkType = NetworkType.MAINNET

    # Comma-separated overrides for the preset endpoint sets
    algod_servers: str = ""
    indexer_servers: str = ""
    # Sent as X-Algo-API-Token / X-Indexer-API-Token when set
    algod_token: str = ""
    indexer_token: str = ""

    account_poll_interval: float = Field(default=ACCOUNT_POLL_INTERVAL, gt=0)
    transaction_poll_interval: float = Field(default=TRANSACTION_POLL_INTERVAL, gt=0)
    save_interval: float = Field(default=SAVE_STATE_INTERVAL, gt=0)
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)

    data_dir: Path = Path.home() / ".acct-engine"

    log_level: str = "INFO"

    def get_network_info(self) -> NetworkInfo:
        info = get_network_info(self.network)
        if self.algod_servers:
            info.algod_servers = normalize_servers(self.algod_servers.split(","))
        if self.indexer_servers:
            info.indexer_servers = normalize_servers(self.indexer_servers.split(","))
        return info


def get_settings() -> Settings:
    return Settings()
