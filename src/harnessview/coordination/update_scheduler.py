"""
Update Scheduler - throttle and coalesce display updates per update kind.

Each update kind owns one throttle window. A request arriving after the
window has elapsed runs immediately; requests arriving inside the window are
collapsed into a single trailing-edge run of the most recently supplied
operation. Nothing is queued: while the execution monitor reports a busy
regime requests are dropped, and the next request after the regime settles
re-synchronizes the display.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

from ..models import UpdateKind
from ..settings import ThrottleSettings
from .execution_state import ExecutionStateMonitor
from .timeline import Timeline, TimerHandle

logger = logging.getLogger(__name__)

Operation = Callable[[], None]


class ScheduleOutcome(Enum):
    IMMEDIATE = "immediate"   # ran now
    DEFERRED = "deferred"     # armed the trailing timer
    COALESCED = "coalesced"   # replaced the pending operation
    DROPPED = "dropped"       # busy regime, nothing scheduled


@dataclass
class ThrottleWindow:
    """Throttle bookkeeping for one update kind."""
    kind: UpdateKind
    interval_ms: int
    last_fired_at: Optional[float] = None
    pending_scheduled: bool = False
    pending_operation: Optional[Operation] = None
    timer: Optional[TimerHandle] = None

    # Counters for diagnostics
    executed: int = 0
    coalesced: int = 0
    dropped: int = 0
    failures: int = 0

    def clear_pending(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
        self.timer = None
        self.pending_operation = None
        self.pending_scheduled = False


class UpdateScheduler:
    """Per-kind throttling with trailing-edge, last-write-wins coalescing."""

    def __init__(self, monitor: ExecutionStateMonitor, timeline: Timeline,
                 throttle: Optional[ThrottleSettings] = None):
        self._monitor = monitor
        self._timeline = timeline
        self._throttle = throttle or ThrottleSettings()
        self._windows: Dict[UpdateKind, ThrottleWindow] = {}

    def _window(self, kind: UpdateKind) -> ThrottleWindow:
        window = self._windows.get(kind)
        if window is None:
            window = ThrottleWindow(kind=kind, interval_ms=self._interval_for(kind))
            self._windows[kind] = window
        return window

    def _interval_for(self, kind: UpdateKind) -> int:
        return self._throttle.interval_for(kind, self._monitor.is_highest_tier_active())

    def schedule(self, kind: UpdateKind, operation: Operation) -> ScheduleOutcome:
        """
        Run ``operation`` now, or once at the end of the current window.

        Args:
            kind: Update kind whose throttle window applies
            operation: Zero-argument callable performing the display update

        Returns:
            How the request was handled
        """
        kind = UpdateKind(kind)
        window = self._window(kind)

        if self._monitor.is_busy():
            window.dropped += 1
            logger.debug("Dropped %s update: regime %s", kind.value,
                         self._monitor.current().value)
            return ScheduleOutcome.DROPPED

        # Interval follows the tier in effect at request time
        window.interval_ms = self._interval_for(kind)
        now = self._timeline.now()
        interval_s = window.interval_ms / 1000.0

        if window.last_fired_at is None or now - window.last_fired_at >= interval_s:
            if window.pending_scheduled:
                # The window elapsed before the trailing timer ran; run the
                # newest operation now and retire the timer.
                window.clear_pending()
            window.last_fired_at = now
            self._run(window, operation)
            return ScheduleOutcome.IMMEDIATE

        if window.pending_scheduled:
            window.pending_operation = operation
            window.coalesced += 1
            return ScheduleOutcome.COALESCED

        window.pending_scheduled = True
        window.pending_operation = operation
        remaining = interval_s - (now - window.last_fired_at)
        window.timer = self._timeline.call_later(remaining, lambda: self._fire(kind))
        return ScheduleOutcome.DEFERRED

    def _fire(self, kind: UpdateKind) -> None:
        window = self._windows.get(kind)
        if window is None or not window.pending_scheduled:
            return
        operation = window.pending_operation
        window.timer = None
        window.pending_operation = None
        window.pending_scheduled = False

        # Regime may have turned unsafe since the request was accepted
        if self._monitor.is_busy():
            window.dropped += 1
            logger.debug("Deferred %s update became a no-op: regime %s",
                         kind.value, self._monitor.current().value)
            return

        window.last_fired_at = self._timeline.now()
        if operation is not None:
            self._run(window, operation)

    def _run(self, window: ThrottleWindow, operation: Operation) -> None:
        try:
            operation()
            window.executed += 1
        except Exception:
            window.failures += 1
            logger.exception("Update operation for %s failed", window.kind.value)
        finally:
            # A run always retires the pending state of its window
            if window.timer is None:
                window.pending_scheduled = False
                window.pending_operation = None

    def flush(self, kind: Optional[UpdateKind] = None) -> int:
        """Run pending operations immediately, bypassing the throttle."""
        kinds = [UpdateKind(kind)] if kind is not None else list(self._windows)
        flushed = 0
        for k in kinds:
            window = self._windows.get(k)
            if window is None or not window.pending_scheduled:
                continue
            operation = window.pending_operation
            window.clear_pending()
            window.last_fired_at = self._timeline.now()
            if operation is not None:
                self._run(window, operation)
                flushed += 1
        return flushed

    def cancel_all(self) -> int:
        """Drop every pending operation without running it."""
        cancelled = 0
        for window in self._windows.values():
            if window.pending_scheduled:
                window.clear_pending()
                cancelled += 1
        return cancelled

    def reset_windows(self) -> None:
        """Forget last-fired stamps so the next request of every kind runs at once."""
        for window in self._windows.values():
            window.last_fired_at = None

    def is_pending(self, kind: UpdateKind) -> bool:
        window = self._windows.get(UpdateKind(kind))
        return bool(window and window.pending_scheduled)

    def stats(self) -> Dict[str, Dict[str, object]]:
        return {
            kind.value: {
                "interval_ms": w.interval_ms,
                "last_fired_at": w.last_fired_at,
                "pending": w.pending_scheduled,
                "executed": w.executed,
                "coalesced": w.coalesced,
                "dropped": w.dropped,
                "failures": w.failures,
            }
            for kind, w in self._windows.items()
        }


__all__ = ["ScheduleOutcome", "ThrottleWindow", "UpdateScheduler"]
