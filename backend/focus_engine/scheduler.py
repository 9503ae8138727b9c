"""
Cancellable scheduling for the engine's recurring one-second ticks
and one-shot timeouts (away detection).
"""
import asyncio
import logging
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def every(self, interval: float, callback: Callable[[], None]) -> Handle: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> Handle: ...


class _TaskHandle:
    def __init__(self, task: asyncio.Task):
        self._task = task

    def cancel(self) -> None:
        self._task.cancel()


class AsyncioScheduler:
    """Runs jobs on an asyncio event loop. Must be used from that loop's thread."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def every(self, interval: float, callback: Callable[[], None]) -> Handle:
        task = self._get_loop().create_task(self._repeat(interval, callback))
        return _TaskHandle(task)

    def call_later(self, delay: float, callback: Callable[[], None]) -> Handle:
        return self._get_loop().call_later(delay, callback)

    @staticmethod
    async def _repeat(interval: float, callback: Callable[[], None]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                callback()
            except Exception:
                logger.exception("Scheduled callback %r failed", callback)
