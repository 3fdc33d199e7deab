"""
Memory Guardian - periodic, regime-aware memory sampling and cleanup.

The guardian wakes up on a minutes-scale timer whose period depends on the
regime (walkthroughs are sampled least often so the guardian never competes
with a protected workflow). When process memory exceeds the threshold for the
current regime it trims the template cache through its emergency path and
unsticks a render lock held past its watchdog.

Repeated failures stop the automatic cycle: after ``max_consecutive_failures``
the guardian raises the manual-reset signal instead of looping.
"""

from __future__ import annotations

import gc
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

import psutil

from ..errors import RepeatedCleanupFailure
from ..settings import GuardianSettings
from .capabilities import MANUAL_RESET_REQUIRED, CapabilityRegistry
from .execution_state import ExecutionRegime, ExecutionStateMonitor
from .render_lock import RenderLock
from .template_cache import TemplateCache
from .timeline import Timeline, TimerHandle

logger = logging.getLogger(__name__)

MIN_INTERVAL_S = 1.0


class SampleOutcome(Enum):
    INHIBITED = "inhibited"
    HEALTHY = "healthy"
    CLEANED = "cleaned"
    FAILED = "failed"
    MANUAL_RESET_REQUIRED = "manual_reset_required"


def process_memory_ratio(budget_mb: float) -> float:
    """Resident memory of this process as a fraction of ``budget_mb``."""
    rss_mb = psutil.Process().memory_info().rss / (1024 * 1024)
    return rss_mb / budget_mb


class MemoryGuardian:
    """Background sampler that keeps the display layer within its memory budget."""

    def __init__(self, monitor: ExecutionStateMonitor, cache: TemplateCache,
                 render_lock: RenderLock, timeline: Timeline,
                 settings: Optional[GuardianSettings] = None,
                 capabilities: Optional[CapabilityRegistry] = None,
                 usage_probe: Optional[Callable[[], float]] = None):
        self._monitor = monitor
        self._cache = cache
        self._render_lock = render_lock
        self._timeline = timeline
        self._settings = settings or GuardianSettings()
        self._capabilities = capabilities or CapabilityRegistry()
        self._usage_probe = usage_probe or (
            lambda: process_memory_ratio(self._settings.memory_budget_mb)
        )

        self._timer: Optional[TimerHandle] = None
        self._running = False
        self._manual_reset_required = False

        self.consecutive_failures = 0
        self.samples = 0
        self.cleanups = 0
        self.inhibited = 0
        self.last_ratio: Optional[float] = None
        self.last_outcome: Optional[SampleOutcome] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def manual_reset_required(self) -> bool:
        return self._manual_reset_required

    def current_interval(self) -> float:
        s = self._settings
        q8 = self._monitor.is_highest_tier_active()
        if self._monitor.current() is ExecutionRegime.WALKTHROUGH_RUNNING:
            interval = s.walkthrough_q8_interval_s if q8 else s.walkthrough_interval_s
        else:
            interval = s.systematic_q8_interval_s if q8 else s.systematic_interval_s
        return max(MIN_INTERVAL_S, interval)

    def current_threshold(self) -> float:
        s = self._settings
        q8 = self._monitor.is_highest_tier_active()
        if self._monitor.current() is ExecutionRegime.WALKTHROUGH_RUNNING:
            return s.walkthrough_q8_threshold if q8 else s.walkthrough_threshold
        return s.q8_threshold if q8 else s.threshold

    def start(self) -> None:
        if self._running or self._manual_reset_required:
            return
        self._running = True
        self._arm()
        logger.info("Memory guardian started (interval %.0fs)", self.current_interval())

    def stop(self) -> None:
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm(self) -> None:
        self._timer = self._timeline.call_later(self.current_interval(), self._tick)

    def _tick(self) -> None:
        self._timer = None
        self.sample()
        # Re-arm with the interval of whatever regime is in effect now
        if self._running and not self._manual_reset_required:
            self._arm()

    def sample(self) -> SampleOutcome:
        outcome = self._sample()
        self.last_outcome = outcome
        return outcome

    def _sample(self) -> SampleOutcome:
        if self._manual_reset_required:
            return SampleOutcome.MANUAL_RESET_REQUIRED
        if self._monitor.is_busy():
            self.inhibited += 1
            return SampleOutcome.INHIBITED

        self.samples += 1
        try:
            ratio = self._usage_probe()
            self.last_ratio = ratio
            threshold = self.current_threshold()
            if ratio <= threshold:
                self.consecutive_failures = 0
                return SampleOutcome.HEALTHY

            logger.info("High memory usage (%.2f of budget, threshold %.2f) - performing cleanup",
                        ratio, threshold)
            removed = self._cache.emergency_evict()
            if self._render_lock.is_stale():
                self._render_lock.force_release()
            gc.collect()
            self.cleanups += 1
            self.consecutive_failures = 0
            logger.info("Memory cleanup completed (%d templates evicted)", removed)
            return SampleOutcome.CLEANED

        except Exception as e:
            self.consecutive_failures += 1
            limit = self._settings.max_consecutive_failures
            logger.warning("Memory check failed (%d/%d): %s",
                           self.consecutive_failures, limit, e)
            if self.consecutive_failures >= limit:
                self._require_manual_reset()
                return SampleOutcome.MANUAL_RESET_REQUIRED
            return SampleOutcome.FAILED

    def _require_manual_reset(self) -> None:
        error = RepeatedCleanupFailure(self.consecutive_failures)
        self._manual_reset_required = True
        self.stop()
        logger.error("%s %s", error.message, error.hint)
        self._capabilities.invoke(MANUAL_RESET_REQUIRED, error)

    def manual_reset(self, restart: bool = True) -> None:
        """Clear the failure state and, optionally, resume sampling."""
        self._manual_reset_required = False
        self.consecutive_failures = 0
        logger.info("Memory guardian manually reset")
        if restart:
            self.start()

    def status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "interval_s": self.current_interval(),
            "threshold": self.current_threshold(),
            "last_ratio": self.last_ratio,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "samples": self.samples,
            "cleanups": self.cleanups,
            "inhibited": self.inhibited,
            "consecutive_failures": self.consecutive_failures,
            "manual_reset_required": self._manual_reset_required,
        }


__all__ = ["SampleOutcome", "MemoryGuardian", "process_memory_ratio"]
