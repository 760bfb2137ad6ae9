"""Task tracking for per-event work and deferred chat acknowledgments."""

import asyncio
import functools
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, TypeVar

from .logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[Any]]


class TaskTracker:
    """Track async tasks and keyed delayed tasks.

    The sleep function is injectable so tests can drive deferred work with
    a fake clock instead of waiting on real timers.
    """

    def __init__(self, name: str = "default", sleep: SleepFunc = asyncio.sleep):
        self.name = name
        self._sleep = sleep
        # Strong references; the event loop itself only keeps weak ones
        self._active_tasks: set[asyncio.Task] = set()
        self._scheduled: dict[str, asyncio.Task] = {}
        self._task_counter = 0
        self._completed_count = 0
        self._failed_count = 0
        self._cancelled_count = 0

    def create_task(
        self, coro: Coroutine[Any, Any, T], *, name: str | None = None, log_errors: bool = True
    ) -> asyncio.Task[T]:
        """Start ``coro`` as a task and hold a reference to it until it finishes.

        Failures are counted and, unless ``log_errors`` is False, logged with
        their traceback. Nothing is re-raised.
        """
        self._task_counter += 1
        task = asyncio.create_task(coro, name=name or f"{self.name}-{self._task_counter}")
        self._active_tasks.add(task)
        task.add_done_callback(functools.partial(self._finished, log_errors=log_errors))
        return task

    def _finished(self, task: asyncio.Task, log_errors: bool = True) -> None:
        self._active_tasks.discard(task)
        if task.cancelled():
            self._cancelled_count += 1
            return

        error = task.exception()
        if error is None:
            self._completed_count += 1
            return

        self._failed_count += 1
        if log_errors:
            logger.error(f"{task.get_name()} failed: {error}", tracker=self.name, exc_info=error)

    def schedule(self, key: str, delay: float, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """
        Run ``factory()`` once after ``delay`` seconds.

        Only one pending task may exist per key; a second request for the
        same key is ignored and the pending task is returned.

        Args:
            key: Identifier of the work, normally the redemption event id
            delay: Seconds to wait before running
            factory: Zero-argument callable returning the awaitable to run

        Returns:
            The pending asyncio.Task for this key
        """
        existing = self._scheduled.get(key)
        if existing is not None and not existing.done():
            logger.warning("Deferred task already scheduled, ignoring duplicate", key=key)
            return existing

        async def _deferred():
            await self._sleep(delay)
            await factory()

        task = self.create_task(_deferred(), name=f"deferred:{key}")
        self._scheduled[key] = task

        def _forget(t: asyncio.Task):
            if self._scheduled.get(key) is t:
                del self._scheduled[key]

        task.add_done_callback(_forget)
        logger.debug("Deferred task scheduled", key=key, delay=delay)
        return task

    def cancel(self, key: str) -> bool:
        """Cancel the pending task for a key. Returns True if one was pending."""
        task = self._scheduled.get(key)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    @property
    def pending_keys(self) -> list[str]:
        """Keys of deferred tasks that have not run yet."""
        return [key for key, task in self._scheduled.items() if not task.done()]

    def get_status(self) -> dict[str, Any]:
        return {
            "tracker": self.name,
            "active_count": len(self._active_tasks),
            "scheduled_count": len(self.pending_keys),
            "completed_count": self._completed_count,
            "failed_count": self._failed_count,
            "cancelled_count": self._cancelled_count,
            "total_created": self._task_counter,
        }

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel everything still running, including acknowledgments not yet sent."""
        tasks = [task for task in self._active_tasks if not task.done()]
        if not tasks:
            return

        logger.info(
            "Cancelling tracked tasks",
            tracker=self.name,
            running=len(tasks),
            dropped_acknowledgments=len(self.pending_keys),
        )
        for task in tasks:
            task.cancel()

        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        if still_running:
            logger.warning(f"{len(still_running)} task(s) still running {timeout}s after cancel", tracker=self.name)
