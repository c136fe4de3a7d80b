"""Timer driven throttle and debounce helpers built on the running event loop.

Both helpers keep exactly one timer handle. Callbacks read the latest state when
they fire, so whatever happened between scheduling and firing is never lost.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Set

from ..logger import get_logger

logger = get_logger(__name__)


class UiThrottle:
    """Coalesces update requests into at most one delivery per interval.

    A request arriving after the interval elapsed is delivered at once. Otherwise a
    single timer delivers the latest state when the interval is over, so a steady
    stream of requests still yields one delivery per interval.
    """

    def __init__(self, callback: Callable[[], None], interval: float):
        self._callback = callback
        self._interval = interval
        self._loop = asyncio.get_running_loop()
        self._handle: Optional[asyncio.TimerHandle] = None
        self._last_delivery: Optional[float] = None
        self._dirty = False
        self.deliveries = 0

    def request(self) -> None:
        """Mark the state as changed and deliver it now or at the end of the interval."""
        self._dirty = True
        now = self._loop.time()
        if self._last_delivery is None or now - self._last_delivery >= self._interval:
            self._fire()
        elif self._handle is None:
            self._handle = self._loop.call_later(self._interval - (now - self._last_delivery), self._fire)

    def flush(self) -> None:
        """Deliver a pending update immediately."""
        self._fire()

    def cancel(self) -> None:
        """Drop a pending update."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._dirty = False

    @property
    def pending(self) -> bool:
        return self._dirty

    def _fire(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if not self._dirty:
            return
        self._dirty = False
        self._last_delivery = self._loop.time()
        self.deliveries += 1
        self._callback()


class WriteDebouncer:
    """Runs an asynchronous write once no new request arrived for ``delay`` seconds.

    Every ``schedule`` resets the timer, so only the last request of a burst writes.
    """

    def __init__(self, write: Callable[[], Awaitable[Any]], delay: float):
        self._write = write
        self._delay = delay
        self._loop = asyncio.get_running_loop()
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self.writes = 0

    def schedule(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = self._loop.call_later(self._delay, self._fire)

    @property
    def pending(self) -> bool:
        return self._handle is not None

    async def aclose(self) -> None:
        """Cancel a pending write and wait for writes that already started."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self) -> None:
        self._handle = None
        task = self._loop.create_task(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self) -> None:
        self.writes += 1
        try:
            await self._write()
        except Exception as e:
            logger.warning(f"Debounced write failed: {e}")
