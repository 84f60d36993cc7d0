"""
Re-armable debounce timer on the asyncio event loop.

Each :meth:`Debouncer.trigger` cancels the pending timer and starts a new
one; the callback runs once the quiet period elapses with no further
triggers. A running callback is never cancelled by a later trigger.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from freeflow.logging import get_logger

logger = get_logger("debounce")


class Debouncer:
    """
    Collapse bursts of triggers into one deferred callback.

    Example:
        debouncer = Debouncer(pipeline.flush, delay=0.1)
        debouncer.trigger()
        debouncer.trigger()  # restarts the 100ms window
        # ... pipeline.flush() runs once, 100ms after the last trigger
    """

    def __init__(self, callback: Callable[[], Awaitable[Any]], delay: float) -> None:
        self._callback = callback
        self.delay = delay
        self._timer: asyncio.TimerHandle | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def armed(self) -> bool:
        """True while a timer is waiting to fire."""
        return self._timer is not None

    @property
    def busy(self) -> bool:
        """True while a fired callback is still running."""
        return bool(self._running)

    def trigger(self) -> None:
        """(Re)start the quiet period. Must be called from the event loop."""
        loop = asyncio.get_running_loop()
        if self._timer is not None:
            self._timer.cancel()
        self._timer = loop.call_later(self.delay, self._fire)

    def cancel(self) -> bool:
        """Drop the pending timer. Returns True if one was armed."""
        if self._timer is None:
            return False
        self._timer.cancel()
        self._timer = None
        return True

    def _fire(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self._run())
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("Debounced callback failed")

    async def drain(self) -> None:
        """Wait until every fired callback has finished."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)
