"""
In-process queue for post-completion work
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class ProcessingQueue:
    """
    Runs one background task per upload id on the current event loop.

    Submitting never blocks the caller. A failing task is logged and does not
    affect other uploads. Tasks are never cancelled or timed out; shutdown waits
    for them through drain().
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def submit(self, key: str, handler: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """
        Schedule handler for key unless a task for key is still running.

        Args:
            key: Upload id the work belongs to
            handler: Zero-argument coroutine function doing the work

        Returns:
            The running task for key
        """
        existing = self._tasks.get(key)
        if existing is not None and not existing.done():
            logger.info(f"Processing already scheduled for upload {key}")
            return existing

        task = asyncio.create_task(self._run(key, handler), name=f"process-{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda finished: self._forget(key, finished))
        logger.info(f"Scheduled processing for upload {key}")
        return task

    async def wait_for(self, key: str) -> Optional[Any]:
        """Wait for the task of key if one is pending and return its result."""
        task = self._tasks.get(key)
        if task is None:
            return None
        return await task

    async def drain(self) -> None:
        """Wait for every pending task, including ones submitted while draining."""
        while self._tasks:
            pending = list(self._tasks.values())
            logger.info(f"Waiting for {len(pending)} processing tasks")
            await asyncio.gather(*pending)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _run(self, key: str, handler: Callable[[], Awaitable[Any]]) -> Optional[Any]:
        try:
            return await handler()
        except Exception as e:
            logger.exception(f"Processing failed for upload {key}: {e}")
            return None

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
