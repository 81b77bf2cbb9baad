"""Deadline enforcement via ``asyncio.wait_for``."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Dict, Optional, TypeVar

from .telemetry import get_logger

_logger = get_logger(__name__)
T = TypeVar("T")


class TimeoutManager:
    """Enforce per-call deadlines and collect violation statistics."""

    def __init__(self) -> None:
        self._timeout_counts: Dict[str, int] = defaultdict(int)

    async def execute_with_timeout(
        self,
        awaitable: Awaitable[T],
        timeout: Optional[float],
        dependency_key: str = "",
        correlation_id: str = "",
    ) -> T:
        """Await *awaitable* with an upper-bound *timeout* (seconds).

        Args:
            awaitable: Coroutine or future to await.
            timeout: Maximum seconds to wait; ``None`` waits indefinitely.
            dependency_key: Dependency label for logging / stats.
            correlation_id: Fusion run correlation id.

        Returns:
            Result of the awaitable.

        Raises:
            ValueError: If *timeout* is ``0`` or negative.
            asyncio.TimeoutError: If the deadline expires first.
        """
        if timeout is None:
            return await awaitable
        if timeout <= 0:
            _close_if_coroutine(awaitable)
            raise ValueError("timeout must be > 0")

        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError:
            self._timeout_counts[dependency_key] += 1
            _logger.warning(
                f"Deadline exceeded for {dependency_key} ({timeout}s)",
                extra={"correlation_id": correlation_id, "dependency_key": dependency_key},
            )
            raise

    def get_timeout_stats(self) -> Dict[str, int]:
        """Return mapping of dependency key → timeout count."""
        return dict(self._timeout_counts)

    def reset_stats(self) -> None:
        """Clear all timeout statistics."""
        self._timeout_counts.clear()


def _close_if_coroutine(awaitable: Any) -> None:
    close = getattr(awaitable, "close", None)
    if asyncio.iscoroutine(awaitable) and close is not None:
        close()
