"""The single logical execution timeline shared by all coordination components.

Every deferred action in the display layer is a one-shot timer armed on a
:class:`Timeline`. Production code runs on the asyncio event loop; tests and
scripted replays use :class:`ManualTimeline`, which only moves when advanced.
All times are in seconds.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        """Prevent the callback from running if it has not run yet."""


class Timeline(Protocol):
    def now(self) -> float:
        """Return the current monotonic time in seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""


class AsyncioTimeline:
    """Timeline backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        if self._loop is None:
            try:
                return self._get_loop().time()
            except RuntimeError:
                # No loop yet; loop.time() is time.monotonic() on all stock loops
                return time.monotonic()
        return self._loop.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._get_loop().call_later(max(0.0, delay), callback)


@dataclass
class ManualTimerHandle:
    due: float
    callback: Callable[[], None]
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class ManualTimeline:
    """Deterministic timeline driven by explicit :meth:`advance` calls."""

    current: float = 0.0
    _queue: List[tuple] = field(default_factory=list)
    _seq: itertools.count = field(default_factory=itertools.count)

    def now(self) -> float:
        return self.current

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimerHandle:
        handle = ManualTimerHandle(due=self.current + max(0.0, delay), callback=callback)
        heapq.heappush(self._queue, (handle.due, next(self._seq), handle))
        return handle

    def advance(self, seconds: float) -> int:
        """Move time forward, firing due timers in order. Returns timers fired."""
        if seconds < 0:
            raise ValueError("cannot move the timeline backwards")
        target = self.current + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self.current = max(self.current, due)
            handle.fired = True
            handle.callback()
            fired += 1
        self.current = target
        return fired

    def advance_to(self, when: float) -> int:
        return self.advance(max(0.0, when - self.current))

    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled)


__all__ = [
    "TimerHandle",
    "Timeline",
    "AsyncioTimeline",
    "ManualTimerHandle",
    "ManualTimeline",
]
