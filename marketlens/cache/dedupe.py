"""
Request deduplication for cache-miss thundering herd protection.

When a cache key expires, N simultaneous requests for it would all hit the
upstream API.  ``RequestQueue`` collapses them: the first caller starts the
producer, every concurrent caller for the same key awaits that same task and
observes the identical result or exception.  The key is released as soon as
the producer settles, so a failure never leaves a key stuck.

Deduplication is per process; separate API instances do not share it.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from ..utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DedupeStats:
    """Snapshot of queue counters. Diagnostic only."""
    total: int
    deduped: int
    in_flight: int
    savings_percent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "deduped": self.deduped,
            "inFlight": self.in_flight,
            "savingsPercent": self.savings_percent,
        }


class RequestQueue:
    """In-flight request map keyed by cache key."""

    def __init__(self):
        self._in_flight: dict[str, asyncio.Task] = {}
        self._total = 0
        self._deduped = 0

    async def dedupe(self, key: str, producer: Callable[[], Awaitable[T]]) -> T:
        """Run ``producer`` once per key across concurrent callers.

        If a request with the same key is already in flight, await it instead
        of invoking ``producer`` again.
        """
        if not key:
            raise ValueError("dedupe key must be a non-empty string")

        self._total += 1
        task = self._in_flight.get(key)

        if task is not None:
            self._deduped += 1
            logger.debug(
                "Deduped request",
                key=key,
                deduped=self._deduped,
                total=self._total,
            )
        else:
            logger.debug("New request", key=key)

            task = asyncio.ensure_future(producer())
            self._in_flight[key] = task
            task.add_done_callback(lambda t: self._release(key, t))

        # A cancelled waiter must not cancel the shared producer
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task) -> None:
        # Only release our own entry; a later task may own the key
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Mark the outcome retrieved when every waiter has gone away
        if not task.cancelled():
            task.exception()

    def is_pending(self, key: str) -> bool:
        return key in self._in_flight

    def stats(self) -> DedupeStats:
        """Return current deduplication counters."""
        savings = round(self._deduped / self._total * 100, 1) if self._total > 0 else 0.0
        return DedupeStats(
            total=self._total,
            deduped=self._deduped,
            in_flight=len(self._in_flight),
            savings_percent=savings,
        )

    def clear(self) -> None:
        """Forget in-flight entries and reset counters (tests only)."""
        self._in_flight.clear()
        self._total = 0
        self._deduped = 0
