"""Background task that periodically removes expired cache entries."""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from .cache import ResponseCache

LOGGER = structlog.get_logger("pathproxy.sweeper")


class CacheSweeper:
    """Runs :meth:`ResponseCache.sweep_expired` on its own schedule.

    The first sweep waits ``initial_delay_seconds`` after start so cleanup does
    not compete with warm-up traffic; later sweeps repeat every
    ``interval_seconds`` until :meth:`stop` is called.
    """

    def __init__(self, cache: ResponseCache, interval_seconds: float, initial_delay_seconds: float) -> None:
        self._cache = cache
        self._interval = max(0.0, float(interval_seconds))
        self._initial_delay = max(0.0, float(initial_delay_seconds))
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="cache-sweeper")
        LOGGER.info(
            "cache_sweeper_started",
            interval_seconds=self._interval,
            initial_delay_seconds=self._initial_delay,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def sweep_once(self) -> int:
        try:
            return await self._cache.sweep_expired()
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("cache_sweep_failed", error=str(exc))
            return 0

    async def _run(self) -> None:
        await asyncio.sleep(self._initial_delay)
        while True:
            await self.sweep_once()
            await asyncio.sleep(self._interval)
