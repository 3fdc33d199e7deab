"""
Progressive disclosure of tiered test results.

The tiered test runs the same trials at three capability tiers whose cost
differs by orders of magnitude. Rather than waiting for all tiers or showing
half-finished data, the display reveals each tier once it completes, in
canonical order, and never withdraws a tier it has already shown.

State transitions::

    inert --activate--> active --mark_executing/mark_completed--> active
      ^                    |
      +---deactivate/reset-+   (final tier completed -> grace delay -> deactivate)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..models import ResultItem, Tier
from .execution_state import ExecutionRegime, ExecutionStateMonitor
from .timeline import Timeline, TimerHandle

logger = logging.getLogger(__name__)


@dataclass
class ProgressiveState:
    active: bool = False
    executing_tier: Optional[Tier] = None
    completed_tier: Optional[Tier] = None
    completed_tiers: List[Tier] = field(default_factory=list)
    tier_sequence: List[Tier] = field(default_factory=Tier.canonical)


class ProgressiveDisclosureStateMachine:
    """Monotonic, incremental reveal of per-tier results."""

    def __init__(self, monitor: ExecutionStateMonitor,
                 timeline: Optional[Timeline] = None,
                 grace_ms: int = 2000,
                 on_deactivated: Optional[Callable[[], None]] = None):
        self._monitor = monitor
        self._on_deactivated = on_deactivated
        self._timeline = timeline
        self._grace_ms = grace_ms
        self._state = ProgressiveState()
        self._grace_timer: Optional[TimerHandle] = None

    @property
    def state(self) -> ProgressiveState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state.active

    def activate(self, tier_sequence: Optional[Iterable[Tier]] = None) -> None:
        """Begin a run over ``tier_sequence`` (defaults to all tiers)."""
        tiers = sorted({Tier(t) for t in (tier_sequence or Tier.canonical())},
                       key=lambda t: t.rank)
        self._cancel_grace()
        self._state = ProgressiveState(active=True, tier_sequence=tiers)
        logger.info("Progressive disclosure activated for tiers [%s]",
                    ", ".join(t.value for t in tiers))

    def mark_executing(self, tier: Tier) -> bool:
        tier = Tier(tier)
        state = self._state
        if not state.active:
            logger.warning("Progressive disclosure inert; ignoring %s start", tier.value)
            return False
        if tier not in state.tier_sequence:
            logger.warning("Tier %s is not part of this run; ignoring start", tier.value)
            return False
        if tier in state.completed_tiers:
            logger.warning("Tier %s already completed; ignoring re-execution", tier.value)
            return False
        state.executing_tier = tier
        state.completed_tier = None
        logger.debug("Tier %s executing", tier.value)
        return True

    def mark_completed(self, tier: Tier) -> bool:
        tier = Tier(tier)
        state = self._state
        if not state.active:
            logger.warning("Progressive disclosure inert; ignoring %s completion", tier.value)
            return False
        if tier not in state.tier_sequence:
            logger.warning("Tier %s is not part of this run; ignoring completion", tier.value)
            return False
        if tier in state.completed_tiers:
            return False

        expected = state.tier_sequence[len(state.completed_tiers)]
        if tier is not expected:
            logger.warning("Tier %s completed before %s; ignoring out-of-order completion",
                           tier.value, expected.value)
            return False

        state.completed_tier = tier
        state.executing_tier = None
        state.completed_tiers.append(tier)
        state.completed_tiers.sort(key=lambda t: t.rank)
        logger.info("Tier %s completed; showing [%s]", tier.value,
                    ", ".join(t.value for t in state.completed_tiers))

        if len(state.completed_tiers) == len(state.tier_sequence):
            self._arm_grace()
        return True

    def deactivate(self) -> None:
        self._cancel_grace()
        was_active = self._state.active
        self._state = ProgressiveState()
        if was_active:
            logger.info("Progressive disclosure deactivated; showing all tiers")
            if self._on_deactivated is not None:
                self._on_deactivated()

    def reset(self, force: bool = False) -> bool:
        """Clear to inert. Unforced resets leave an active walkthrough run alone."""
        if (not force and self._state.active
                and self._monitor.current() is ExecutionRegime.WALKTHROUGH_RUNNING):
            logger.info("Progressive state preserved during walkthrough execution")
            return False
        self._cancel_grace()
        self._state = ProgressiveState()
        logger.debug("Progressive state reset (force=%s)", force)
        return True

    def tiers_to_show(self) -> List[Tier]:
        state = self._state
        if not state.active:
            return Tier.canonical()
        # A tier in flight with nothing finished yet has no safe data to show
        if state.executing_tier is not None and not state.completed_tiers:
            return []
        return list(state.completed_tiers)

    def filter_result(self, item: ResultItem) -> ResultItem:
        """Copy of ``item`` restricted to the tiers that may be shown."""
        shown = set(self.tiers_to_show())
        variants = [v for v in item.variants if v.tier is None or v.tier in shown]
        tier_data = {t: d for t, d in item.tier_data.items() if t in shown}
        return item.model_copy(update={"variants": variants, "tier_data": tier_data})

    def _arm_grace(self) -> None:
        if self._timeline is None:
            return
        self._cancel_grace()
        self._grace_timer = self._timeline.call_later(
            self._grace_ms / 1000.0, self._on_grace_elapsed
        )

    def _on_grace_elapsed(self) -> None:
        self._grace_timer = None
        self.deactivate()

    def _cancel_grace(self) -> None:
        if self._grace_timer is not None:
            self._grace_timer.cancel()
            self._grace_timer = None

    def status(self) -> Dict[str, Any]:
        state = self._state
        return {
            "active": state.active,
            "executing_tier": state.executing_tier.value if state.executing_tier else None,
            "completed_tier": state.completed_tier.value if state.completed_tier else None,
            "completed_tiers": [t.value for t in state.completed_tiers],
            "tier_sequence": [t.value for t in state.tier_sequence],
            "tiers_to_show": [t.value for t in self.tiers_to_show()],
            "deactivation_pending": self._grace_timer is not None,
        }


__all__ = ["ProgressiveState", "ProgressiveDisclosureStateMachine"]
