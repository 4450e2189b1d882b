import asyncio
from typing import Any, Callable, Optional, Set

from toolhub.logger import logger


class Debounce:
    """
    One cancellable deferred action.

    Scheduling always cancels the pending action before arming the new one,
    so at most one action is ever pending.
    """

    def __init__(self):
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, action: Callable[[], Any], delay: float) -> None:
        """Run ``action`` after ``delay`` seconds unless rescheduled or cancelled."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(delay, self._fire, action)

    __call__ = schedule

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, action: Callable[[], Any]) -> None:
        self._handle = None
        try:
            result = action()
        except Exception as e:
            logger.error(f"Debounced action failed: {e}")
            return

        if asyncio.iscoroutine(result):
            # Keep a reference so the task is not garbage collected mid-flight
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Debounced action failed: {task.exception()}")
