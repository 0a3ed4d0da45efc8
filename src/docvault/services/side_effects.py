"""Fire-and-forget side effects.

Download counters and share-link revocations must never delay or fail the
request that triggered them. They run as detached asyncio tasks whose
failures go to a dedicated error channel (a warning log plus an optional
callback) instead of the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[str, BaseException], None]


class SideEffectRunner:
    """Schedules detached coroutines and keeps them alive until done.

    Args:
        on_error: Optional callback invoked with (effect name, exception) for
            every failed side effect.
    """

    def __init__(self, on_error: ErrorCallback | None = None) -> None:
        self._on_error = on_error
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Start coro in the background.

        Args:
            name: Short label for logs (e.g. "increment_download_count").
            coro: Coroutine to run.

        Returns:
            The scheduled task.
        """
        task = asyncio.get_running_loop().create_task(coro, name=f"docvault:{name}")
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(name, t))
        return task

    def _finished(self, name: str, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.warning("Side effect %s failed: %s", name, exc)
        if self._on_error is not None:
            try:
                self._on_error(name, exc)
            except Exception:
                logger.exception("Side effect error callback raised for %s", name)

    async def drain(self) -> None:
        """Wait for every scheduled side effect to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
