"""
Serialization of async tasks that must never run re-entrantly.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger

T = TypeVar("T")


class TaskMutex:
    """
    Named lock around an async task.

    A call issued while another is still running waits for it to finish
    and then runs its own body. Bodies never overlap.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = asyncio.Lock()

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        if self._lock.locked():
            logger.debug(f"{self.name} already running, waiting for it to finish")
        async with self._lock:
            return await func()
