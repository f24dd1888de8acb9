import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Run *func* every *interval* seconds on the event loop, with a fixed
    delay between the end of one run and the start of the next.

    ``stop()`` only interrupts the wait between runs: a run that has
    started always completes.  An interval of 0 or less disables the task.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], Awaitable[object]]) -> None:
        self.name = name
        self.interval = interval
        self._func = func
        self._task: asyncio.Task | None = None
        self._stopping: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        if self.interval <= 0:
            logger.info("Periodic task %s disabled (interval=%s)", self.name, self.interval)
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info("Periodic task %s started (every %ss)", self.name, self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Periodic task %s stopped", self.name)

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self._func()
            except Exception:
                # Keep the schedule alive; the next run retries.
                logger.exception("Periodic task %s failed", self.name)
