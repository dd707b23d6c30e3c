"""
Supervisor for detached background tasks.

Job pipelines are started without the caller awaiting them. The supervisor
keeps a reference to each running task (so it cannot be garbage collected
mid-flight), logs anything that escapes it, and lets shutdown wait for
in-flight work.
"""
import asyncio
import logging
from typing import Coroutine, Set

logger = logging.getLogger(__name__)


class TaskSupervisor:
    """Tracks fire-and-forget asyncio tasks."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        """Schedule coro on the running loop and track it until it finishes."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning(f"Background task cancelled: {task.get_name()}")
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Background task {task.get_name()} crashed: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float) -> int:
        """
        Wait up to timeout seconds for in-flight tasks, then cancel the rest.

        Returns:
            Number of tasks that had to be cancelled
        """
        if not self._tasks:
            return 0

        pending_tasks = list(self._tasks)
        logger.info(f"Draining {len(pending_tasks)} background tasks (timeout {timeout}s)")
        _, pending = await asyncio.wait(pending_tasks, timeout=timeout)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(pending)} background tasks still running at shutdown")
        return len(pending)
