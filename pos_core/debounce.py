from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

log = logging.getLogger("pos_core.debounce")


class DebounceScheduler:
    """Cancellable single-slot timer.

    ``schedule`` replaces whatever call is pending, so in a burst of calls only
    the most recent one runs, ``delay_s`` after it was scheduled. After
    ``close`` nothing fires and further ``schedule`` calls are ignored.
    """

    def __init__(self, delay_s: float, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if delay_s < 0:
            raise ValueError(f"delay_s must be >= 0 (got {delay_s})")
        self.delay_s = float(delay_s)
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._closed = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def schedule(self, fn: Callable[[], None], delay_s: Optional[float] = None) -> bool:
        if self._closed:
            return False
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()
        delay = self.delay_s if delay_s is None else max(0.0, float(delay_s))
        self._handle = loop.call_later(delay, self._fire, fn)
        return True

    def _fire(self, fn: Callable[[], None]) -> None:
        self._handle = None
        if self._closed:
            return
        try:
            fn()
        except Exception:
            log.exception("Debounced callback error")

    def cancel(self) -> bool:
        handle = self._handle
        if handle is None:
            return False
        self._handle = None
        handle.cancel()
        return True

    def close(self) -> None:
        self._closed = True
        self.cancel()
