"""
Template Cache - bounded memoization of rendered fragments.

Capacity follows the execution regime: small while the systematic suite runs
(keep the update path cheap), larger when idle, largest while a walkthrough
runs (walkthrough fragments are expensive to regenerate and must stay
stable). While the highest-cost tier executes the cache is bypassed entirely.

Eviction is FIFO by insertion. Two paths exist:

* steady state - after an insert pushes the size over capacity, the single
  oldest entry goes;
* emergency - when the size is above the pressure threshold (typically right
  after the regime switched to a smaller profile, or on request from the
  memory guardian) the cache is cleared and only the most recent entries are
  re-inserted.
"""

from __future__ import annotations

import itertools
import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import CacheGeneratorError
from ..models import Tier
from ..settings import CacheLimits, CacheSettings
from .execution_state import BUSY_REGIMES, ExecutionRegime, ExecutionStateMonitor

logger = logging.getLogger(__name__)


class CacheProfile(Enum):
    IDLE = "idle"
    SYSTEMATIC = "systematic"
    WALKTHROUGH = "walkthrough"
    TIER_Q8 = "tier_q8"


@dataclass
class CacheEntry:
    key: str
    value: Any
    inserted_at: int


class TemplateCache:
    """Regime- and tier-aware fragment cache."""

    def __init__(self, monitor: ExecutionStateMonitor,
                 settings: Optional[CacheSettings] = None):
        self._monitor = monitor
        self._settings = settings or CacheSettings()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._sequence = itertools.count()
        self._last_tier: Optional[Tier] = None

        self.hits = 0
        self.misses = 0
        self.bypasses = 0
        self.evictions = 0
        self.emergency_evictions = 0
        self.oversized = 0

    def _resolve(self) -> Tuple[CacheProfile, bool]:
        """Return the profile in effect and whether the cache is bypassed."""
        regime = self._monitor.current()
        q8 = self._monitor.is_highest_tier_active()

        if regime is ExecutionRegime.WALKTHROUGH_RUNNING:
            return CacheProfile.WALKTHROUGH, False
        if regime in BUSY_REGIMES:
            return CacheProfile.SYSTEMATIC, True
        if regime is ExecutionRegime.SYSTEMATIC_RUNNING:
            if q8:
                return CacheProfile.TIER_Q8, True
            return CacheProfile.SYSTEMATIC, False
        if q8:
            return CacheProfile.TIER_Q8, False
        return CacheProfile.IDLE, False

    def limits_for(self, profile: CacheProfile) -> CacheLimits:
        return getattr(self._settings, profile.value)

    def current_limits(self) -> CacheLimits:
        profile, _ = self._resolve()
        return self.limits_for(profile)

    def get(self, key: str, generator: Callable[[], Any]) -> Any:
        """
        Return the fragment for ``key``, generating and caching it on a miss.

        Raises:
            CacheGeneratorError: if ``generator`` raises; nothing is cached
        """
        profile, bypass = self._resolve()
        limits = self.limits_for(profile)
        self._enforce_bounds(limits)

        if bypass:
            self.bypasses += 1
            return self._generate(key, generator)

        entry = self._entries.get(key)
        if entry is not None:
            self.hits += 1
            return entry.value

        self.misses += 1
        value = self._generate(key, generator)

        if isinstance(value, str) and len(value) > self._settings.max_fragment_chars:
            self.oversized += 1
            logger.warning("Large fragment (%d chars), not caching: %s", len(value), key)
            return value

        self._entries[key] = CacheEntry(key=key, value=value, inserted_at=next(self._sequence))
        if len(self._entries) > limits.capacity:
            oldest, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug("Evicted %s (capacity %d, profile %s)",
                         oldest, limits.capacity, profile.value)
        return value

    def _generate(self, key: str, generator: Callable[[], Any]) -> Any:
        try:
            return generator()
        except Exception as e:
            raise CacheGeneratorError(key, str(e)) from e

    def _enforce_bounds(self, limits: CacheLimits) -> None:
        if len(self._entries) > limits.pressure_threshold:
            self._emergency(limits.keep_recent)
        while len(self._entries) > limits.capacity:
            self._entries.popitem(last=False)
            self.evictions += 1

    def _emergency(self, keep: int) -> int:
        entries = list(self._entries.values())
        kept = entries[-keep:] if keep > 0 else []
        self._entries.clear()
        for entry in kept:
            self._entries[entry.key] = entry
        removed = len(entries) - len(kept)
        self.emergency_evictions += 1
        logger.info("Emergency cache cleanup: kept %d most recent of %d templates",
                    len(kept), len(entries))
        return removed

    def emergency_evict(self) -> int:
        """Bulk eviction keeping the most recent entries of the current profile."""
        limits = self.current_limits()
        return self._emergency(limits.keep_recent)

    def on_tier_transition(self, tier: Optional[Tier]) -> None:
        """Clear for the highest-cost tier; restore the regular profile when leaving it."""
        tier = Tier(tier) if tier is not None else None
        if tier is Tier.highest():
            size = len(self._entries)
            self._entries.clear()
            logger.info("Template cache cleared for %s (%d entries)", tier.value, size)
        elif self._last_tier is Tier.highest():
            logger.debug("Left %s; cache limits revert to regime profile", self._last_tier.value)
            self._enforce_bounds(self.current_limits())
        self._last_tier = tier

    def occupancy(self) -> int:
        """Current size, after applying the bounds in effect right now."""
        self._enforce_bounds(self.current_limits())
        return len(self._entries)

    def keys(self) -> List[str]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def status(self) -> Dict[str, Any]:
        profile, bypass = self._resolve()
        limits = self.limits_for(profile)
        return {
            "size": self.occupancy(),
            "profile": profile.value,
            "bypass": bypass,
            "capacity": limits.capacity,
            "pressure_threshold": limits.pressure_threshold,
            "keep_recent": limits.keep_recent,
            "hits": self.hits,
            "misses": self.misses,
            "bypasses": self.bypasses,
            "evictions": self.evictions,
            "emergency_evictions": self.emergency_evictions,
            "oversized": self.oversized,
        }


__all__ = ["CacheProfile", "CacheEntry", "TemplateCache"]
