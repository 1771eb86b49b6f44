# clinic_console/console/poller.py
import asyncio
import contextlib
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class CancellationToken:
    """One-shot cancellation signal that sleeping tasks can wait on."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class PeriodicRefresher:
    """Restartable fixed-interval task.

    ``start`` runs one refresh immediately and then one per interval until
    ``stop``; ``trigger`` runs a one-shot refresh outside the schedule. A
    failing refresh is logged and the loop keeps going.
    """

    def __init__(self, refresh: Callable[[], Awaitable], interval: float, name: str = "refresh"):
        self._refresh = refresh
        self.interval = interval
        self.name = name
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, immediate: bool = True):
        if self.running:
            return
        self._token = CancellationToken()
        self._task = asyncio.get_running_loop().create_task(self._run(self._token, immediate))
        logger.info("poller.started", name=self.name, interval=self.interval)

    async def _run(self, token: CancellationToken, immediate: bool):
        if immediate:
            await self._tick()
        while not token.cancelled:
            if await token.wait(self.interval):
                break
            await self._tick()

    async def _tick(self):
        self.ticks += 1
        try:
            await self._refresh()
        except Exception:
            logger.exception("poller.refresh_failed", name=self.name)

    async def trigger(self):
        await self._tick()

    async def stop(self):
        if self._token is not None:
            self._token.cancel()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if task is not None:
            logger.info("poller.stopped", name=self.name, ticks=self.ticks)
