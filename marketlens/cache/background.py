"""
Detached cache writes and refreshes.

Cache writes that the caller should not wait on run as named tasks owned
by ``WriteBehind``.  Every task is referenced until it finishes and every
failure is logged, so nothing is left as a dangling, unobserved coroutine.
"""

import asyncio
from typing import Any, Awaitable, Optional

from ..utils.logging import get_logger

logger = get_logger(__name__)


class WriteBehind:
    """Registry of detached cache tasks."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._failures = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def failures(self) -> int:
        return self._failures

    def spawn(self, name: str, coro: Awaitable[Any]) -> asyncio.Task:
        """Schedule ``coro`` without awaiting it; failures are logged, never raised."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(name, t))
        return task

    def _finished(self, name: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Write-behind task cancelled", task=name)
            return
        exc = task.exception()
        if exc is not None:
            self._failures += 1
            logger.error("Write-behind task failed", task=name, error=str(exc))
        elif task.result() is False:
            # Stores report write failures as False
            self._failures += 1
            logger.warning("Write-behind store write failed", task=name)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for all currently scheduled tasks (shutdown and tests)."""
        while self._tasks:
            pending = list(self._tasks)
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            if not_done:
                logger.warning("Write-behind drain timed out", pending=len(not_done))
                return

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
