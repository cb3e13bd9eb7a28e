"""
app/services/cleanup.py — Periodic cache maintenance
The sweep runs on a fixed period from the app lifespan, independent of
request traffic, so cache reads stay O(1) and never evict.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from loguru import logger

from app.core.cache_manager import CacheGateway
from app.core.clock import Clock, SystemClock


class CacheSweeper:
    """Background task calling CacheGateway.sweep() every `interval_seconds`."""

    def __init__(
        self,
        cache: CacheGateway,
        interval_seconds: float,
        clock: Optional[Clock] = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._cache = cache
        self._interval = interval_seconds
        self._clock: Clock = clock or SystemClock()
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Cache sweeper started (every {self._interval / 3600:.1f}h).")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def run_once(self) -> int:
        removed = self._cache.sweep(self._clock.now())
        self.runs += 1
        return removed

    async def _run(self) -> None:
        while True:
            await self._clock.sleep(self._interval)
            try:
                self.run_once()
            except Exception as exc:
                logger.error(f"Cache sweep failed (retrying next period): {exc}")

