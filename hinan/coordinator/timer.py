"""
Scoped-cancellation handle for periodic route regeneration.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RegenerationTimer:
    """
    Runs ``callback`` every ``interval`` seconds until cancelled.

    The first call happens one full interval after ``start()``. ``cancel()``
    is synchronous and safe to call from inside the callback itself, from
    another task, or more than once; after it returns the callback is never
    invoked again.
    """

    def __init__(self, interval: float, callback: Callable[[], Awaitable[None]], name: str = ""):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self._callback = callback
        self._name = name or "regeneration"
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled

    def start(self) -> "RegenerationTimer":
        """Schedule the loop on the running event loop. Returns self."""
        if self._task is not None:
            raise RuntimeError("timer already started")
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)
        return self

    def cancel(self) -> None:
        self._cancelled = True
        task = self._task
        if task is None or task.done():
            return
        # From inside the callback, let the loop exit on its own so the
        # callback can finish its remaining awaits.
        if task is not asyncio.current_task():
            task.cancel()

    async def wait_closed(self) -> None:
        """Wait for the loop task to finish after cancel()."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while not self._cancelled:
            await asyncio.sleep(self.interval)
            if self._cancelled:
                break
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s tick failed", self._name)
        logger.debug("%s timer stopped", self._name)
