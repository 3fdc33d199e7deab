"""Integration tests for the display coordinator."""

from unittest.mock import Mock

import pytest

from harnessview.coordination.capabilities import AFTER_RENDER, LOCK_TIMEOUT
from harnessview.coordination.update_scheduler import ScheduleOutcome
from harnessview.coordinator import (
    EMERGENCY_RESET_NOTICE,
    NO_RENDERABLE_NOTICE,
    RESET_AFFORDANCE,
    DisplayCoordinator,
)
from harnessview.errors import InvalidPayloadError, LockTimeoutError
from harnessview.models import ResultItem, Tier, UpdateKind, VariantResult
from harnessview.ui.result_renderer import RichResultRenderer
from harnessview.ui.results_view import PLACEHOLDER_NOTICE, WALKTHROUGH_PAUSED_NOTICE


class FlakyRenderer(RichResultRenderer):
    """Renderer that fails for selected test ids."""

    def __init__(self, failing=()):
        self.failing = set(failing)

    def render_result(self, item):
        if item.test_id in self.failing:
            raise RuntimeError(f"cannot render {item.test_id}")
        return super().render_result(item)


@pytest.fixture
def probe():
    return Mock(return_value=0.1)


@pytest.fixture
def coordinator(settings, flags, timeline, probe):
    return DisplayCoordinator(settings=settings, flag_board=flags, timeline=timeline,
                              usage_probe=probe)


def tiered_item(*tiers):
    return ResultItem(
        test_id="T10",
        variants=[VariantResult(name=f"MCD-{t.value}", tier=t) for t in tiers],
        tier_data={t: {"accuracy": 0.9} for t in tiers},
    )


class TestScheduleUpdate:
    """Test the producer entry point."""

    def test_renders_immediately_when_idle(self, coordinator):
        outcome = coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"})
        assert outcome is ScheduleOutcome.IMMEDIATE
        assert "T1" in coordinator.view.results["T1"]
        assert coordinator.view.results_notice is None

    def test_missing_payload_keeps_placeholder(self, coordinator):
        assert coordinator.schedule_update(UpdateKind.RESULT, None) is ScheduleOutcome.DROPPED
        assert coordinator.view.results_notice == PLACEHOLDER_NOTICE
        assert coordinator.view.revision == 0

    def test_invalid_payload_raises(self, coordinator):
        with pytest.raises(InvalidPayloadError):
            coordinator.schedule_update(UpdateKind.RESULT, {"description": "no id"})

    def test_busy_drop_then_resync(self, flags, coordinator):
        flags.set(trials_executing=True)
        assert coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"}) \
            is ScheduleOutcome.DROPPED
        assert coordinator.view.results == {}

        flags.set(trials_executing=False)
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T2"})
        assert set(coordinator.view.results) == {"T1", "T2"}

    def test_latest_payload_wins(self, coordinator, timeline):
        coordinator.schedule_update(UpdateKind.TEST_BED, {"model_name": "first"})
        coordinator.schedule_update(UpdateKind.TEST_BED, {"model_name": "second"})
        coordinator.schedule_update(UpdateKind.TEST_BED, {"model_name": "third"})
        assert "first" in coordinator.view.test_bed

        timeline.advance(2.0)
        assert "third" in coordinator.view.test_bed

    def test_walkthrough_and_live_sections(self, coordinator):
        coordinator.schedule_update(UpdateKind.WALKTHROUGH,
                                    {"domain": "medical", "scenario": "triage", "step": 1})
        coordinator.schedule_update(UpdateKind.LIVE, {"metrics": {"accuracy": 0.75}})
        assert "medical" in coordinator.view.walkthrough["medical/triage"]
        assert "0.75" in coordinator.view.live

    def test_after_render_hook(self, coordinator):
        hook = Mock()
        coordinator.capabilities.register(AFTER_RENDER, hook)
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"})
        hook.assert_called_once_with(UpdateKind.RESULT)


class TestRenderFailures:
    """Test per-item isolation of renderer failures."""

    def test_failed_item_gets_marker(self, settings, flags, timeline, probe):
        coordinator = DisplayCoordinator(settings=settings, flag_board=flags, timeline=timeline,
                                         renderer=FlakyRenderer({"BAD"}), usage_probe=probe)
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "GOOD"})
        timeline.advance(1)
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "BAD"})

        results = coordinator.view.results
        assert "GOOD" in results["GOOD"]
        assert "Error rendering BAD" in results["BAD"]
        assert coordinator.render_failures == 1
        assert coordinator.view.results_notice is None

    def test_all_items_failing(self, settings, flags, timeline, probe):
        coordinator = DisplayCoordinator(settings=settings, flag_board=flags, timeline=timeline,
                                         renderer=FlakyRenderer({"BAD"}), usage_probe=probe)
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "BAD"})
        assert coordinator.view.results_notice == NO_RENDERABLE_NOTICE


class TestProgressiveDisplay:
    """Test tier filtering of the tiered test."""

    def test_tiers_revealed_on_completion(self, flags, coordinator):
        flags.set(systematic_running=True)
        coordinator.activate_progressive()
        coordinator.mark_tier_executing(Tier.Q1)
        coordinator.schedule_update(UpdateKind.RESULT, tiered_item(Tier.Q1))
        coordinator.scheduler.flush()
        assert coordinator.get_tiers_to_show() == []
        assert "MCD-Q1" not in coordinator.view.results["T10"]

        coordinator.mark_tier_completed(Tier.Q1)
        coordinator.mark_tier_executing(Tier.Q4)
        coordinator.schedule_update(UpdateKind.RESULT, tiered_item(Tier.Q1, Tier.Q4))
        coordinator.scheduler.flush()
        fragment = coordinator.view.results["T10"]
        assert "MCD-Q1" in fragment
        assert "MCD-Q4" not in fragment

    def test_other_tests_unfiltered(self, coordinator):
        coordinator.activate_progressive()
        coordinator.schedule_update(UpdateKind.RESULT, ResultItem(
            test_id="T1", variants=[VariantResult(name="MCD-Q4", tier=Tier.Q4)],
        ))
        coordinator.scheduler.flush()
        assert "MCD-Q4" in coordinator.view.results["T1"]

    def test_grace_period_restores_full_display(self, coordinator, timeline):
        coordinator.activate_progressive([Tier.Q1])
        coordinator.mark_tier_executing(Tier.Q1)
        coordinator.mark_tier_completed(Tier.Q1)
        timeline.advance(2.0)
        assert not coordinator.progressive.active
        assert coordinator.get_tiers_to_show() == Tier.canonical()

    def test_highest_tier_clears_cache(self, coordinator):
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"})
        assert len(coordinator.cache) == 1
        coordinator.activate_progressive()
        coordinator.mark_tier_executing(Tier.Q8)
        assert len(coordinator.cache) == 0

    def test_reset_progressive(self, flags, coordinator):
        coordinator.activate_progressive()
        flags.set(walkthrough_active=True, walkthrough_running=True)
        assert coordinator.reset_progressive() is False
        assert coordinator.reset_progressive(force=True) is True


class TestWalkthroughPause:
    """Test the detailed results pause while a walkthrough runs."""

    def test_results_paused(self, flags, coordinator, timeline):
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"})
        flags.set(walkthrough_active=True, walkthrough_running=True)
        timeline.advance(1)
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T2"})

        assert coordinator.view.results_notice == WALKTHROUGH_PAUSED_NOTICE
        assert list(coordinator.view.results) == ["T1"]

    def test_force_refresh_shows_unfiltered(self, flags, coordinator):
        coordinator.activate_progressive()
        coordinator.schedule_update(UpdateKind.RESULT, tiered_item(Tier.Q1, Tier.Q4))
        flags.set(walkthrough_active=True, walkthrough_running=True)

        coordinator.force_refresh()
        fragment = coordinator.view.results["T10"]
        assert "MCD-Q1" in fragment and "MCD-Q4" in fragment
        assert coordinator.view.results_notice == WALKTHROUGH_PAUSED_NOTICE


class TestLockRecovery:
    """Test recovery from a render lock that is not released."""

    def test_busy_lock_retries_later(self, coordinator, timeline):
        coordinator.render_lock.try_acquire()
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"})
        assert coordinator.view.results == {}
        assert coordinator.get_status()["pending_retry"] == ["result"]

        timeline.advance(2.0)
        assert "T1" in coordinator.view.results
        assert not coordinator.render_lock.held
        assert coordinator.render_lock.forced_releases == 1

    def test_watchdog_retries_once(self, coordinator, timeline):
        hook = Mock()
        coordinator.capabilities.register(LOCK_TIMEOUT, hook)
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"})
        revision = coordinator.view.revision

        coordinator.render_lock.try_acquire()
        timeline.advance(3.0)

        assert not coordinator.render_lock.held
        hook.assert_called_once()
        assert isinstance(hook.call_args.args[0], LockTimeoutError)
        assert coordinator.view.revision > revision

    def test_retry_skips_render_while_trials_execute(self, flags, coordinator, timeline):
        coordinator.render_lock.try_acquire()
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"})
        flags.set(trials_executing=True)

        timeline.advance(2.0)
        assert not coordinator.render_lock.held
        assert coordinator.view.revision == 0
        assert coordinator.view.results == {}
        assert coordinator.get_status()["pending_retry"] == []

        flags.set(trials_executing=False)
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T2"})
        timeline.advance(1.0)
        assert set(coordinator.view.results) == {"T1", "T2"}

    def test_watchdog_skips_render_while_trials_execute(self, flags, coordinator, timeline):
        hook = Mock()
        coordinator.capabilities.register(LOCK_TIMEOUT, hook)
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"})
        revision = coordinator.view.revision

        coordinator.render_lock.try_acquire()
        flags.set(trials_executing=True)
        timeline.advance(3.0)

        hook.assert_called_once()
        assert not coordinator.render_lock.held
        assert coordinator.view.revision == revision

    def test_force_refresh_releases_lock(self, coordinator):
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"})
        coordinator.render_lock.try_acquire()
        coordinator.force_refresh()
        assert not coordinator.render_lock.held
        assert "T1" in coordinator.view.results


class TestEmergencyReset:
    """Test the manual recovery path."""

    def test_full_reset_when_idle(self, coordinator):
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"})
        coordinator.activate_progressive()
        coordinator.mark_tier_completed(Tier.Q1)

        coordinator.emergency_reset()
        assert not coordinator.progressive.active
        assert len(coordinator.cache) == 0
        assert coordinator.view.system_notice == EMERGENCY_RESET_NOTICE
        assert coordinator.guardian.running

    def test_progressive_preserved_while_running(self, flags, coordinator):
        flags.set(systematic_running=True)
        coordinator.activate_progressive()
        coordinator.mark_tier_completed(Tier.Q1)

        coordinator.emergency_reset()
        assert coordinator.progressive.state.completed_tiers == [Tier.Q1]

    def test_reset_affordance_after_repeated_failures(self, coordinator, timeline, probe):
        probe.side_effect = RuntimeError("probe unavailable")
        coordinator.start()
        timeline.advance(180)

        assert coordinator.guardian.manual_reset_required
        assert coordinator.view.system_notice == RESET_AFFORDANCE

        probe.side_effect = None
        coordinator.emergency_reset()
        assert not coordinator.guardian.manual_reset_required
        assert coordinator.view.system_notice == EMERGENCY_RESET_NOTICE
        coordinator.stop()


class TestStatus:
    """Test the status snapshot."""

    def test_status_sections(self, flags, coordinator):
        flags.set(systematic_running=True, current_tier=Tier.Q4)
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"})
        status = coordinator.get_status()

        assert status["regime"] == "systematic_running"
        assert status["flags"]["current_tier"] == "Q4"
        assert status["cache"]["profile"] == "systematic"
        assert status["cache"]["size"] == 1
        assert status["scheduler"]["result"]["executed"] == 1
        assert status["progressive"]["active"] is False
        assert status["render_lock"]["held"] is False
        assert status["guardian"]["running"] is False

    def test_last_request_times(self, coordinator):
        assert coordinator.get_status()["last_requests"] == {}
        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T1"})
        coordinator.schedule_update(UpdateKind.LIVE, {"metrics": {"accuracy": 0.5}})
        first = coordinator.get_status()["last_requests"]["result"]

        coordinator.schedule_update(UpdateKind.RESULT, {"test_id": "T2"})
        requests = coordinator.get_status()["last_requests"]
        assert set(requests) == {"result", "live"}
        assert requests["result"] >= first
