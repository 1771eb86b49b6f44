# clinic_console/console/debounce.py
"""Debounce with last-query-wins.

Every submitted query bumps a generation counter. A pending timer is cancelled
by the next keystroke; a fetch that is already in flight is left to finish,
but its response is dropped unless its generation is still the newest one.
"""
import asyncio
from typing import Awaitable, Callable, Generic, Optional, Set, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Debouncer(Generic[T]):
    def __init__(
        self,
        fetch: Callable[[str], Awaitable[T]],
        on_result: Callable[[str, T], None],
        on_error: Optional[Callable[[str, Exception], None]] = None,
        on_clear: Optional[Callable[[], None]] = None,
        delay: float = 0.3,
        min_length: int = 2,
    ):
        self._fetch = fetch
        self._on_result = on_result
        self._on_error = on_error
        self._on_clear = on_clear
        self.delay = delay
        self.min_length = min_length
        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._disposed = False

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def submit(self, query: str) -> bool:
        """Schedule a fetch for ``query``; returns False when the query is too short to search."""
        if self._disposed:
            return False
        self._generation += 1
        self._cancel_timer()

        text = (query or "").strip()
        if len(text) < self.min_length:
            if self._on_clear is not None:
                self._on_clear()
            return False

        task = asyncio.get_running_loop().create_task(self._run(text, self._generation))
        self._timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _run(self, query: str, generation: int):
        await asyncio.sleep(self.delay)
        # From here on the fetch is in flight; a newer keystroke no longer cancels it
        if self._timer is asyncio.current_task():
            self._timer = None
        try:
            result = await self._fetch(query)
        except Exception as e:
            if self._is_current(generation):
                if self._on_error is None:
                    raise
                self._on_error(query, e)
            else:
                logger.debug("search.error.discarded", query=query, generation=generation)
            return
        if not self._is_current(generation):
            logger.debug("search.response.discarded", query=query, generation=generation, newest=self._generation)
            return
        self._on_result(query, result)

    def _is_current(self, generation: int) -> bool:
        return not self._disposed and generation == self._generation

    def _cancel_timer(self):
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def drain(self):
        """Wait until no timer or fetch is outstanding."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def dispose(self):
        self._disposed = True
        self._generation += 1
        self._cancel_timer()
