"""
Cooperative scheduling on the asyncio event loop.

The detection session never blocks and never spawns threads of its own:
everything it does runs as a callback scheduled here.  Three kinds of
callback are used: a one-shot timer, a repeating timer and a per-frame
callback paced at the display frame rate.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional, Protocol


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """What the session needs from its environment."""

    def now_ms(self) -> int: ...

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> Cancellable: ...

    def call_every(self, interval_ms: float, callback: Callable[[], None]) -> Cancellable: ...

    def request_frame(self, callback: Callable[[], None]) -> Cancellable: ...


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class _Repeating:
    """Re-arms itself after each call until cancelled."""

    def __init__(self, loop: asyncio.AbstractEventLoop, interval_s: float, callback: Callable[[], None]) -> None:
        self._loop = loop
        self._interval_s = interval_s
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = loop.call_later(interval_s, self._fire)
        self._cancelled = False

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._handle = self._loop.call_later(self._interval_s, self._fire)
        self._callback()

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioScheduler:
    """
    :class:`Scheduler` backed by an asyncio event loop.

    Parameters
    ----------
    frame_rate:
        Frame callbacks per second for :meth:`request_frame`.
    loop:
        Event loop to schedule on; the running loop when omitted.
    """

    def __init__(self, frame_rate: float = 30.0, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self.frame_rate = frame_rate
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now_ms(self) -> int:
        return monotonic_ms()

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay_ms / 1000.0, callback)

    def call_every(self, interval_ms: float, callback: Callable[[], None]) -> _Repeating:
        return _Repeating(self.loop, interval_ms / 1000.0, callback)

    def request_frame(self, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(1.0 / self.frame_rate, callback)
