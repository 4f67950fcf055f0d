"""
Fire-and-forget background work on the running event loop.

Each submitted coroutine becomes one detached ``asyncio.Task``. The submitter
never awaits it; the dispatcher only holds a reference until the task ends so
it is not garbage collected mid-flight, and logs anything it raised.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundDispatcher:
    """
    Detached task runner with a bound on in-flight units.

    Args:
        max_pending: Units allowed in flight at once; further submissions are
            dropped until some finish.
    """

    def __init__(self, max_pending: int = 1000) -> None:
        if max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self._max_pending = max_pending
        self._tasks: Set[asyncio.Task] = set()
        self.submitted = 0
        self.completed = 0
        self.failed = 0
        self.dropped = 0

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> bool:
        """
        Schedule ``coro`` and return immediately.

        Returns False if the unit was dropped because the dispatcher is full.
        """
        if len(self._tasks) >= self._max_pending:
            coro.close()
            self.dropped += 1
            logger.warning("dispatch queue full (%d in flight), dropping unit", len(self._tasks))
            return False

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        self.submitted += 1
        task.add_done_callback(self._on_done)
        return True

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self.failed += 1
            return
        exc = task.exception()
        if exc is not None:
            self.failed += 1
            logger.error(
                "background unit %s failed: %s",
                task.get_name(),
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
            return
        self.completed += 1

    async def drain(self, timeout: float = 5.0) -> None:
        """
        Wait for in-flight units, cancelling whatever is left after ``timeout``.
        """
        if not self._tasks:
            return
        pending = list(self._tasks)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("cancelled %d background units at shutdown", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)
