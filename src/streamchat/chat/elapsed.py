from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL_S = 0.1


class ElapsedTicker:
    """Reports seconds since ``started_at`` on a fixed interval.

    Display only: nothing about stream correctness depends on it.
    """

    def __init__(
        self,
        started_at: float,
        on_tick: Callable[[float], None],
        *,
        interval_s: float = DEFAULT_TICK_INTERVAL_S,
    ) -> None:
        self.started_at = started_at
        self.interval_s = interval_s
        self._on_tick = on_tick
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def elapsed(self) -> float:
        return max(0.0, asyncio.get_running_loop().time() - self.started_at)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                self._on_tick(self.elapsed())
            except Exception:
                logger.exception("Elapsed tick callback failed")
