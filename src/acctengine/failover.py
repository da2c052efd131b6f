"""
Multi-endpoint failover for remote calls.

Every remote read or write goes through call_with_failover(): the endpoints
of one capability are tried in priority order and the first attempt that
both completes and passes validation wins. Validation (schema decoding,
genesis hash checks) happens inside the operation, so a server answering
with garbage or for the wrong network is treated exactly like a server
that is down.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from loguru import logger

T = TypeVar("T")


class NetworkMismatchError(ValueError):
    """Raised when a server answers for a different network than configured."""


class AllEndpointsFailedError(Exception):
    """Raised when every endpoint of a failover call failed."""

    def __init__(self, label: str, failures: list[tuple[str, Exception]]):
        self.label = label
        self.failures = failures
        if failures:
            endpoint, error = failures[-1]
            detail = f"last error from {endpoint}: {type(error).__name__}: {error}"
        else:
            detail = "no endpoints configured"
        super().__init__(f"{label} failed on all {len(failures)} endpoint(s), {detail}")

    @property
    def last_error(self) -> Exception | None:
        return self.failures[-1][1] if self.failures else None


async def async_waterfall(
    providers: Sequence[Callable[[], Awaitable[T]]],
    label: str = "remote call",
    names: Sequence[str] | None = None,
) -> tuple[T, int]:
    """
    Run zero-argument providers in order until one succeeds.

    Args:
        providers: Callables each performing one attempt
        label: Operation name used in logs and errors
        names: Optional display names for the providers (e.g. endpoint URLs)

    Returns:
        Tuple of (result, index of the provider that produced it)

    Raises:
        AllEndpointsFailedError: If every provider raised
    """
    failures: list[tuple[str, Exception]] = []

    for index, provider in enumerate(providers):
        name = names[index] if names is not None else f"provider #{index}"
        try:
            result = await provider()
        except Exception as e:
            logger.debug(f"{label} failed on {name}: {type(e).__name__}: {e}")
            failures.append((name, e))
            continue
        if failures:
            logger.debug(f"{label} succeeded on {name} after {len(failures)} failure(s)")
        return result, index

    raise AllEndpointsFailedError(label, failures)


async def call_with_failover(
    endpoints: Sequence[str],
    op: Callable[[str], Awaitable[T]],
    label: str = "remote call",
) -> tuple[T, str]:
    """
    Call op against each endpoint in order until one succeeds.

    Returns:
        Tuple of (result, endpoint that served it)
    """

    def provider(endpoint: str) -> Callable[[], Awaitable[T]]:
        return lambda: op(endpoint)

    result, index = await async_waterfall(
        [provider(endpoint) for endpoint in endpoints], label=label, names=endpoints
    )
    return result, endpoints[index]
