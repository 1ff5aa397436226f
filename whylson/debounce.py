"""
Debouncer - per-key cancellable timers on the running event loop.

Each key (a ligo source path) has at most one pending timer. Scheduling again
before the timer fires cancels it and starts a new one, so a burst of edits
collapses into a single call after a quiet period.

Only the waiting phase is cancellable: once the delay has elapsed the key is
released and the callback runs to completion even if the key is scheduled
again meanwhile.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Hashable

logger = logging.getLogger(__name__)


class Debouncer:
    """Table of pending debounced calls keyed by document."""

    def __init__(self, delay: float):
        """
        Args:
            delay: Default quiet period in seconds
        """
        if delay <= 0:
            raise ValueError(f"Debounce delay must be positive, got {delay}")
        self.delay = delay
        self._pending: dict[Hashable, asyncio.Task] = {}
        self._running: set[asyncio.Task] = set()

    def schedule(
        self,
        key: Hashable,
        callback: Callable[[], Awaitable[Any]],
        delay: float | None = None,
    ) -> asyncio.Task:
        """
        (Re)start the timer for key; callback runs after the quiet period.

        Must be called from within a running event loop.
        """
        self.cancel(key)
        task = asyncio.get_running_loop().create_task(
            self._fire(key, callback, self.delay if delay is None else delay)
        )
        self._pending[key] = task
        return task

    async def _fire(self, key: Hashable, callback: Callable[[], Awaitable[Any]], delay: float) -> None:
        await asyncio.sleep(delay)

        # Past this point the call is no longer cancellable through the table
        task = asyncio.current_task()
        if self._pending.get(key) is task:
            del self._pending[key]
        self._running.add(task)
        try:
            await self._run(key, callback)
        finally:
            self._running.discard(task)

    async def _run(self, key: Hashable, callback: Callable[[], Awaitable[Any]]) -> None:
        try:
            await callback()
        except Exception:
            logger.exception(f"Debounced call for {key} failed")

    def cancel(self, key: Hashable) -> bool:
        """Cancel the pending timer for key. Returns whether one was pending."""
        task = self._pending.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._pending):
            self.cancel(key)

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    def is_busy(self) -> bool:
        """Whether any timer is pending or any callback is running."""
        return bool(self._pending or self._running)

    async def drain(self) -> None:
        """Wait for every pending timer and running callback to finish."""
        while self._pending or self._running:
            await asyncio.gather(
                *self._pending.values(), *self._running, return_exceptions=True
            )
