"""Fixed-interval ticker for polling loops."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

LOG = logging.getLogger("compact_client.scheduler")


class Ticker:
    """Invoke a coroutine function every ``interval`` seconds.

    Each tick runs as its own task, so a slow or hung call never delays the
    following ticks. ``stop()`` only cancels the timer: calls already in
    flight run to completion and their consumers are expected to drop
    results that arrive after they stopped listening.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable[object]],
        name: str = "ticker",
        run_immediately: bool = True,
    ):
        self.interval = interval
        self.callback = callback
        self.name = name
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"{self.name}-timer")
        LOG.debug("%s started (interval=%ss)", self.name, self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        LOG.debug("%s stopped", self.name)

    async def drain(self) -> None:
        """Wait for ticks already in flight."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run(self) -> None:
        if not self.run_immediately:
            await asyncio.sleep(self.interval)
        while True:
            self._spawn()
            await asyncio.sleep(self.interval)

    def _spawn(self) -> None:
        task = asyncio.get_running_loop().create_task(self._invoke())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _invoke(self) -> None:
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOG.exception("%s tick failed: %s", self.name, exc)
