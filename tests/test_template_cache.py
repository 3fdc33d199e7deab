"""Unit tests for the regime-aware template cache."""

import pytest

from harnessview.coordination.template_cache import CacheProfile, TemplateCache
from harnessview.errors import CacheGeneratorError
from harnessview.models import Tier
from harnessview.settings import CacheSettings


@pytest.fixture
def cache(monitor):
    return TemplateCache(monitor)


def fill(cache, keys):
    for key in keys:
        cache.get(key, lambda key=key: f"<{key}>")


class TestMemoization:
    """Test hits, misses and generator handling."""

    def test_generator_called_once_per_key(self, cache):
        calls = []

        def gen():
            calls.append(1)
            return "fragment"

        assert cache.get("a", gen) == "fragment"
        assert cache.get("a", gen) == "fragment"
        assert len(calls) == 1
        assert cache.hits == 1
        assert cache.misses == 1

    def test_generator_failure_is_not_cached(self, cache):
        def broken():
            raise ValueError("bad template")

        with pytest.raises(CacheGeneratorError) as exc_info:
            cache.get("a", broken)

        assert isinstance(exc_info.value.__cause__, ValueError)
        assert "a" not in cache
        assert cache.get("a", lambda: "ok") == "ok"

    def test_oversized_fragment_not_cached(self, monitor):
        cache = TemplateCache(monitor, CacheSettings(max_fragment_chars=10))
        assert cache.get("big", lambda: "x" * 11) == "x" * 11
        assert "big" not in cache
        assert cache.oversized == 1


class TestBypass:
    """Test that expensive or unsafe regimes skip the cache."""

    def test_bypass_while_busy(self, flags, cache):
        flags.set(trials_executing=True)
        calls = []
        for _ in range(2):
            cache.get("a", lambda: calls.append(1) or "fragment")
        assert len(calls) == 2
        assert len(cache) == 0
        assert cache.bypasses == 2

    def test_bypass_while_highest_tier_executes(self, flags, cache):
        flags.set(systematic_running=True, current_tier=Tier.Q8)
        cache.get("a", lambda: "fragment")
        assert len(cache) == 0
        assert cache.status()["profile"] == CacheProfile.TIER_Q8.value
        assert cache.status()["bypass"] is True

    def test_walkthrough_is_never_bypassed(self, flags, cache):
        flags.set(walkthrough_active=True, walkthrough_running=True, current_tier=Tier.Q8)
        cache.get("a", lambda: "fragment")
        assert "a" in cache


class TestBounds:
    """Test FIFO eviction and bulk eviction under pressure."""

    def test_idle_capacity(self, cache):
        fill(cache, [f"k{i}" for i in range(1, 32)])
        assert len(cache) == 30
        assert "k1" not in cache
        assert cache.keys()[0] == "k2"

    def test_systematic_capacity(self, flags, cache):
        flags.set(systematic_running=True)
        fill(cache, [f"k{i}" for i in range(1, 13)])
        assert cache.keys() == [f"k{i}" for i in range(3, 13)]

    def test_pressure_after_profile_shrinks(self, flags, cache):
        """25 entries cached under a walkthrough, then the suite takes over."""
        # FIFO inserts evict one at a time; pressure builds only when the profile shrinks
        flags.set(walkthrough_active=True, walkthrough_running=True)
        fill(cache, [f"k{i}" for i in range(1, 26)])
        assert len(cache) == 25

        flags.set(walkthrough_active=False, walkthrough_running=False, systematic_running=True)
        assert cache.occupancy() == 5
        assert cache.keys() == ["k21", "k22", "k23", "k24", "k25"]
        assert cache.emergency_evictions == 1

    def test_shrink_below_pressure_trims_oldest(self, flags, cache):
        flags.set(walkthrough_active=True, walkthrough_running=True)
        fill(cache, [f"k{i}" for i in range(1, 16)])

        flags.set(walkthrough_active=False, walkthrough_running=False, systematic_running=True)
        cache.get("k15", lambda: "unused")
        assert cache.keys() == [f"k{i}" for i in range(6, 16)]
        assert cache.emergency_evictions == 0

    def test_emergency_evict_keeps_recent(self, cache):
        fill(cache, [f"k{i}" for i in range(1, 26)])
        removed = cache.emergency_evict()
        assert removed == 15
        assert cache.keys() == [f"k{i}" for i in range(16, 26)]


class TestTierTransitions:
    """Test cache behavior around the highest-cost tier."""

    def test_entering_highest_tier_clears(self, cache):
        fill(cache, ["a", "b"])
        cache.on_tier_transition(Tier.Q4)
        assert len(cache) == 2
        cache.on_tier_transition(Tier.Q8)
        assert len(cache) == 0

    def test_leaving_highest_tier_enforces_profile(self, flags, cache):
        cache.on_tier_transition(Tier.Q8)
        flags.set(current_tier=Tier.Q8)
        fill(cache, [f"k{i}" for i in range(1, 6)])
        assert cache.current_limits().capacity == 5

        flags.set(current_tier=None)
        cache.on_tier_transition(None)
        assert cache.current_limits().capacity == 30
        assert len(cache) == 5
