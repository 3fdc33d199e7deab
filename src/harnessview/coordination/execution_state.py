"""Execution regime classification.

The execution engines only flip flags; this module turns those flags into the
one regime that currently owns the display. Every other coordination
component asks the monitor before touching shared state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

from ..models import Tier

logger = logging.getLogger(__name__)


class ExecutionRegime(Enum):
    IDLE = "idle"
    SYSTEMATIC_RUNNING = "systematic_running"
    WALKTHROUGH_RUNNING = "walkthrough_running"
    TRANSITIONAL = "transitional"
    UNKNOWN = "unknown"


BUSY_REGIMES = frozenset({ExecutionRegime.TRANSITIONAL, ExecutionRegime.UNKNOWN})


@dataclass(frozen=True)
class ExecutionFlags:
    """Raw producer signals at one instant."""
    trials_executing: bool = False
    walkthrough_active: bool = False
    walkthrough_running: bool = False
    systematic_running: bool = False
    current_tier: Optional[Tier] = None


class FlagBoard:
    """Mutable flag holder flipped by the execution engines.

    The board is the default flag source of :class:`ExecutionStateMonitor`;
    readers only ever see immutable :class:`ExecutionFlags` snapshots.
    """

    def __init__(self, flags: Optional[ExecutionFlags] = None):
        self._flags = flags or ExecutionFlags()

    def snapshot(self) -> ExecutionFlags:
        return self._flags

    def set(self, **changes) -> ExecutionFlags:
        if "current_tier" in changes and changes["current_tier"] is not None:
            changes["current_tier"] = Tier(changes["current_tier"])
        self._flags = replace(self._flags, **changes)
        logger.debug("Execution flags updated: %s", self._flags)
        return self._flags

    def clear(self) -> ExecutionFlags:
        self._flags = ExecutionFlags()
        return self._flags


class ExecutionStateMonitor:
    """Single point of truth for which regime owns the display."""

    def __init__(self, flag_source: Callable[[], ExecutionFlags]):
        self._flag_source = flag_source
        self._last_regime: Optional[ExecutionRegime] = None

    @staticmethod
    def classify(flags: ExecutionFlags) -> ExecutionRegime:
        """Pure classification; first matching rule wins."""
        if flags.trials_executing:
            return ExecutionRegime.TRANSITIONAL
        if flags.walkthrough_active and flags.walkthrough_running:
            return ExecutionRegime.WALKTHROUGH_RUNNING
        if flags.systematic_running and not flags.walkthrough_active:
            return ExecutionRegime.SYSTEMATIC_RUNNING
        if not flags.systematic_running and not flags.walkthrough_running:
            return ExecutionRegime.IDLE
        return ExecutionRegime.UNKNOWN

    def flags(self) -> ExecutionFlags:
        return self._flag_source()

    def current(self) -> ExecutionRegime:
        regime = self.classify(self.flags())
        if regime is not self._last_regime:
            logger.debug("Execution regime %s -> %s",
                         self._last_regime.value if self._last_regime else None,
                         regime.value)
            self._last_regime = regime
        return regime

    def current_tier(self) -> Optional[Tier]:
        return self.flags().current_tier

    def is_busy(self) -> bool:
        return self.current() in BUSY_REGIMES

    def is_walkthrough(self) -> bool:
        return self.current() is ExecutionRegime.WALKTHROUGH_RUNNING

    def is_highest_tier_active(self) -> bool:
        return self.current_tier() is Tier.highest()

    def is_highest_tier_executing(self) -> bool:
        """True while the costliest tier runs under the systematic regime."""
        return (self.current() is ExecutionRegime.SYSTEMATIC_RUNNING
                and self.is_highest_tier_active())


__all__ = [
    "ExecutionRegime",
    "BUSY_REGIMES",
    "ExecutionFlags",
    "FlagBoard",
    "ExecutionStateMonitor",
]
