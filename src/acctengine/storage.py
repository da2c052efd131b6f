"""
Wallet state persistence.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol

from loguru import logger

from acctengine.wallet.models import WalletState


class StateStore(Protocol):
    def load(self, public_key: str) -> WalletState | None: ...

    def save(self, state: WalletState) -> None: ...


class JsonStateStore:
    """
    One JSON file per account under data_dir.

    Writes go to a temporary file that is then renamed over the old one, so
    the cursor and the transactions it covers are always saved together.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)

    def path_for(self, public_key: str) -> Path:
        return self.data_dir / f"{public_key}.json"

    def load(self, public_key: str) -> WalletState | None:
        path = self.path_for(public_key)
        if not path.exists():
            return None
        state = WalletState.model_validate_json(path.read_text())
        logger.debug(
            f"Loaded wallet state for {public_key}: height {state.block_height}, "
            f"{len(state.transactions)} transactions"
        )
        return state

    def save(self, state: WalletState) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(state.public_key)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(state.model_dump_json(indent=2))
        os.replace(tmp_path, path)
        logger.debug(f"Saved wallet state to {path}")
