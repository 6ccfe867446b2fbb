"""In-process tracking of background scan work."""

import asyncio
import logging
from typing import Awaitable, Dict, List, Optional

from stackprobe.exceptions import JobAlreadyRunningError

logger = logging.getLogger(__name__)


class JobTracker:
    """
    Registry of asyncio tasks keyed by a job key (e.g. "render:<scan id>").

    At most one task per key is in flight; a finished task frees its key.
    Nothing is persisted, so queued work is lost when the process exits.
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def submit(self, key: str, coro: Awaitable) -> asyncio.Task:
        """Schedule ``coro`` under ``key``.

        Raises:
            JobAlreadyRunningError: If a task with the same key is still running
        """
        if self.is_running(key):
            # The coroutine will never be awaited; close it so no warning is emitted
            close = getattr(coro, "close", None)
            if close is not None:
                close()
            raise JobAlreadyRunningError(key)

        task = asyncio.ensure_future(coro)
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._finished(k, t))
        logger.debug(f"Job started: {key}")
        return task

    def _finished(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            logger.info(f"Job cancelled: {key}")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Job failed: {key}: {error}")
        else:
            logger.debug(f"Job finished: {key}")

    def is_running(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def running(self) -> List[str]:
        return [key for key, task in self._tasks.items() if not task.done()]

    async def wait(self, key: Optional[str] = None) -> None:
        """Wait for one job (or every job when ``key`` is None) to finish."""
        if key is not None:
            tasks = [self._tasks[key]] if key in self._tasks else []
        else:
            tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel everything still running and wait for it to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
