"""
Fixed-delay polling of named async tasks.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger


class PollingScheduler:
    """
    Runs each registered task immediately and then again `interval` seconds
    after the previous run completed.

    A failing run is logged and does not affect later runs of the same task
    or any other task. stop() cancels every loop, including runs in flight.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    @property
    def scheduled(self) -> list[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    def schedule(
        self,
        name: str,
        interval: float,
        task: Callable[[], Awaitable[Any]],
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            raise ValueError(f"Task already scheduled: {name}")

        loop_task = asyncio.create_task(self._run_loop(name, interval, task))
        loop_task.set_name(f"poll:{name}")
        self._tasks[name] = loop_task
        logger.debug(f"Scheduled {name} every {interval}s")

    async def _run_loop(
        self,
        name: str,
        interval: float,
        task: Callable[[], Awaitable[Any]],
    ) -> None:
        while True:
            try:
                await task()
            except Exception as e:
                logger.warning(f"Scheduled task {name} failed: {type(e).__name__}: {e}")
            # Unregistered by stop() while the body was running
            if self._tasks.get(name) is not asyncio.current_task():
                return
            await asyncio.sleep(interval)

    async def stop(self) -> None:
        if not self._tasks:
            return
        logger.debug(f"Stopping {len(self._tasks)} scheduled task(s)")

        # A task may stop the scheduler from inside its own body
        current = asyncio.current_task()
        pending = [task for task in self._tasks.values() if task is not current]
        for task in pending:
            task.cancel()
        self._tasks.clear()

        await asyncio.gather(*pending, return_exceptions=True)
