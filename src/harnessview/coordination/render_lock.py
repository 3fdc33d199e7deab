"""Render lock guarding mutation of the shared render surface.

The lock is a plain flag (the timeline is single-threaded) with a watchdog:
once held longer than its timeout it is force-released, a warning is logged
and the owner's retry hook runs once.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..errors import LockTimeoutError
from .timeline import Timeline, TimerHandle

logger = logging.getLogger(__name__)


class RenderLock:
    def __init__(self, timeline: Timeline, timeout_ms: int = 3000,
                 on_forced_release: Optional[Callable[[LockTimeoutError], None]] = None):
        self._timeline = timeline
        self.timeout_ms = timeout_ms
        self._on_forced_release = on_forced_release
        self._held = False
        self._acquired_at: Optional[float] = None
        self._watchdog: Optional[TimerHandle] = None
        self.forced_releases = 0

    @property
    def held(self) -> bool:
        return self._held

    def held_for_ms(self) -> float:
        if not self._held or self._acquired_at is None:
            return 0.0
        return (self._timeline.now() - self._acquired_at) * 1000.0

    def is_stale(self) -> bool:
        return self._held and self.held_for_ms() >= self.timeout_ms

    def try_acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        self._acquired_at = self._timeline.now()
        self._watchdog = self._timeline.call_later(self.timeout_ms / 1000.0, self._on_watchdog)
        return True

    def acquire_or_recover(self) -> bool:
        """Acquire the lock, force-releasing a stale holder and retrying once."""
        if self.try_acquire():
            return True
        if self.is_stale():
            self.force_release()
            return self.try_acquire()
        return False

    def release(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        self._held = False
        self._acquired_at = None

    def force_release(self, notify: bool = False) -> Optional[LockTimeoutError]:
        """Release a lock held past its watchdog. Returns the timeout error, if any."""
        if not self._held:
            return None
        error = LockTimeoutError(self.held_for_ms(), self.timeout_ms)
        self.forced_releases += 1
        logger.warning("Forcing render lock release: %s", error.message)
        self.release()
        if notify and self._on_forced_release is not None:
            self._on_forced_release(error)
        return error

    def _on_watchdog(self) -> None:
        self._watchdog = None
        if self._held:
            self.force_release(notify=True)

    def status(self) -> dict:
        return {
            "held": self._held,
            "held_for_ms": round(self.held_for_ms(), 1),
            "timeout_ms": self.timeout_ms,
            "forced_releases": self.forced_releases,
        }


__all__ = ["RenderLock"]
