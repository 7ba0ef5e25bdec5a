import asyncio
from typing import Optional, Set

from loguru import logger

from sitescope.processor import CrawlProcessor


class Scheduler:
    """Fires a processor tick immediately and then every ``interval_seconds``.

    Ticks run as background tasks so a long crawl never delays the timer; the
    processor itself skips ticks that overlap a job in flight.
    """

    def __init__(self, processor: CrawlProcessor, interval_seconds: float = 10):
        self.processor = processor
        self.interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()
        self._ticks: Set[asyncio.Task] = set()

    def _spawn_tick(self) -> asyncio.Task:
        task = asyncio.create_task(self._tick())
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)
        return task

    async def _tick(self) -> None:
        try:
            await self.processor.poll_and_process()
        except Exception as e:
            logger.error(f"Scheduler tick failed: {e}")

    async def run(self) -> None:
        logger.info(f"Scheduler started (every {self.interval_seconds}s)...")
        while not self._stop_event.is_set():
            self._spawn_tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped.")

    async def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._ticks:
            await asyncio.wait(list(self._ticks), timeout=timeout)
