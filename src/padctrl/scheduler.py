"""
Cancellable timers on the running asyncio loop.

A callback that has already started is allowed to finish when its timer is
cancelled; a timer that wakes up after cancellation does nothing.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


async def _invoke(callback: Callable[[], Any]) -> None:
    result = callback()
    if inspect.isawaitable(result):
        await result


class Timer:
    """Run a callback once after ``delay`` seconds."""

    def __init__(self, delay: float, callback: Callable[[], Any], name: str = "timer"):
        self._delay = delay
        self._callback = callback
        self._name = name
        self._cancelled = False
        self._fired = False
        self._task: Optional[asyncio.Task] = asyncio.get_running_loop().create_task(
            self._run(), name=name
        )

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled

    async def _run(self) -> None:
        await asyncio.sleep(self._delay)
        if self._cancelled:
            return
        self._fired = True
        try:
            await _invoke(self._callback)
        except Exception as e:
            logger.error(f"Timer {self._name} callback failed: {e}")

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._fired:
            self._task.cancel()


class PeriodicTask:
    """Run a callback every ``interval`` seconds until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], Any], name: str = "periodic"):
        self._interval = interval
        self._callback = callback
        self._name = name
        self._cancelled = False
        self._in_callback = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled

    def start(self) -> None:
        if self.running:
            return
        self._cancelled = False
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            if self._cancelled:
                return
            self._in_callback = True
            try:
                await _invoke(self._callback)
            except Exception as e:
                logger.error(f"Periodic task {self._name} failed: {e}")
            finally:
                self._in_callback = False

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._in_callback:
            self._task.cancel()
