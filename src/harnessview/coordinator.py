"""
Display Coordinator - the public facade of the live results display.

The coordinator owns one instance of each coordination component, all
sharing the same timeline and execution monitor, and drives the render
surface. Execution engines push payloads through :meth:`schedule_update` and
report tier transitions; the coordinator decides when (and whether) the
display is touched.

Payloads are accumulated immediately: throttling and busy-drops only delay
the display, never lose data. The next render of a kind always rebuilds it
from the newest accumulated state.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .coordination.capabilities import (
    AFTER_RENDER,
    LOCK_TIMEOUT,
    MANUAL_RESET_REQUIRED,
    CapabilityRegistry,
)
from .coordination.execution_state import (
    ExecutionFlags,
    ExecutionRegime,
    ExecutionStateMonitor,
    FlagBoard,
)
from .coordination.memory_guardian import MemoryGuardian
from .coordination.progressive import ProgressiveDisclosureStateMachine
from .coordination.render_lock import RenderLock
from .coordination.template_cache import TemplateCache
from .coordination.timeline import AsyncioTimeline, Timeline, TimerHandle
from .coordination.update_scheduler import ScheduleOutcome, UpdateScheduler
from .errors import (
    CacheGeneratorError,
    DataUnavailableError,
    LockTimeoutError,
    RenderFailureError,
    RepeatedCleanupFailure,
)
from .models import (
    LiveComparison,
    ResultItem,
    TestBedSnapshot,
    Tier,
    UpdateKind,
    UpdateRequest,
    WalkthroughStep,
    parse_payload,
    payload_fingerprint,
)
from .settings import HarnessSettings
from .ui.result_renderer import ResultRenderer, RichResultRenderer, error_marker
from .ui.results_view import PLACEHOLDER_NOTICE, WALKTHROUGH_PAUSED_NOTICE, ResultsView

logger = logging.getLogger(__name__)

NO_RENDERABLE_NOTICE = (
    "[yellow]Results were received but none could be rendered. "
    "Check the log for render failures.[/yellow]"
)
RESET_AFFORDANCE = (
    "[bold red]Display maintenance stopped after repeated failures.[/bold red] "
    "Run an emergency reset to resume."
)
EMERGENCY_RESET_NOTICE = "[green]Emergency reset complete.[/green]"


class DisplayCoordinator:
    """Execution-aware coordination of display updates."""

    def __init__(self, settings: Optional[HarnessSettings] = None,
                 flag_board: Optional[FlagBoard] = None,
                 timeline: Optional[Timeline] = None,
                 renderer: Optional[ResultRenderer] = None,
                 capabilities: Optional[CapabilityRegistry] = None,
                 usage_probe: Optional[Callable[[], float]] = None):
        self.settings = settings or HarnessSettings()
        self.flags = flag_board or FlagBoard()
        self.timeline = timeline or AsyncioTimeline()
        self.renderer = renderer or RichResultRenderer()
        self.capabilities = capabilities or CapabilityRegistry()

        self.monitor = ExecutionStateMonitor(self.flags.snapshot)
        self.scheduler = UpdateScheduler(self.monitor, self.timeline, self.settings.throttle)
        self.cache = TemplateCache(self.monitor, self.settings.cache)
        self.progressive = ProgressiveDisclosureStateMachine(
            self.monitor, self.timeline,
            grace_ms=self.settings.progressive_grace_ms,
            on_deactivated=self._on_progressive_deactivated,
        )
        self.render_lock = RenderLock(
            self.timeline, self.settings.render_lock_timeout_ms,
            on_forced_release=self._on_lock_timeout,
        )
        self.guardian = MemoryGuardian(
            self.monitor, self.cache, self.render_lock, self.timeline,
            self.settings.guardian, self.capabilities, usage_probe,
        )
        self.view = ResultsView(lock_check=lambda: self.render_lock.held)

        if not self.capabilities.is_available(MANUAL_RESET_REQUIRED):
            self.capabilities.register(MANUAL_RESET_REQUIRED, self._show_reset_affordance)

        # Accumulated display data
        self._test_bed: Optional[TestBedSnapshot] = None
        self._results: "OrderedDict[str, ResultItem]" = OrderedDict()
        self._walkthrough: "OrderedDict[str, WalkthroughStep]" = OrderedDict()
        self._live: Optional[LiveComparison] = None

        self._retry_kinds: Set[UpdateKind] = set()
        self._retry_timer: Optional[TimerHandle] = None
        self._last_requests: Dict[UpdateKind, UpdateRequest] = {}
        self.render_failures = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.guardian.start()

    def stop(self) -> None:
        self.guardian.stop()
        self.scheduler.cancel_all()
        self._cancel_retry()

    # ------------------------------------------------------------------
    # Producer interface
    # ------------------------------------------------------------------

    def schedule_update(self, kind: UpdateKind, payload: Any) -> ScheduleOutcome:
        """
        Accept a payload of ``kind`` and schedule the matching display update.

        Raises:
            InvalidPayloadError: when the payload does not validate for ``kind``
        """
        kind = UpdateKind(kind)
        parsed = parse_payload(kind, payload)
        if parsed is None:
            error = DataUnavailableError(kind.value)
            logger.info("%s", error.message)
            return ScheduleOutcome.DROPPED

        self._last_requests[kind] = UpdateRequest(kind=kind, payload=parsed)
        self._ingest(parsed)
        return self.scheduler.schedule(kind, lambda: self._render_kind(kind))

    def _ingest(self, payload: Any) -> None:
        if isinstance(payload, TestBedSnapshot):
            self._test_bed = payload
        elif isinstance(payload, ResultItem):
            self._results[payload.test_id] = payload
        elif isinstance(payload, WalkthroughStep):
            self._walkthrough[f"{payload.domain}/{payload.scenario}"] = payload
        elif isinstance(payload, LiveComparison):
            self._live = payload

    def get_tiers_to_show(self) -> List[Tier]:
        return self.progressive.tiers_to_show()

    def activate_progressive(self, tier_sequence: Optional[Iterable[Tier]] = None) -> None:
        self.progressive.activate(tier_sequence)
        self._schedule_results()

    def mark_tier_executing(self, tier: Tier) -> bool:
        tier = Tier(tier)
        self.cache.on_tier_transition(tier)
        changed = self.progressive.mark_executing(tier)
        if changed:
            self._schedule_results()
        return changed

    def mark_tier_completed(self, tier: Tier) -> bool:
        changed = self.progressive.mark_completed(Tier(tier))
        if changed:
            self._schedule_results()
        return changed

    def reset_progressive(self, force: bool = False) -> bool:
        changed = self.progressive.reset(force)
        if changed:
            self._schedule_results()
        return changed

    def _schedule_results(self) -> None:
        self.scheduler.schedule(UpdateKind.RESULT, lambda: self._render_kind(UpdateKind.RESULT))

    def _on_progressive_deactivated(self) -> None:
        self._schedule_results()

    # ------------------------------------------------------------------
    # Manual controls
    # ------------------------------------------------------------------

    def force_refresh(self) -> None:
        """Re-render every section now, regardless of throttle state."""
        logger.info("Manual display refresh requested")
        if self.render_lock.held:
            self.render_lock.force_release()
        self._cancel_retry()
        self.scheduler.cancel_all()
        self.scheduler.reset_windows()
        for kind in UpdateKind:
            self._render_kind(kind, manual=True)

    def emergency_reset(self) -> None:
        """
        Recover from a stuck display.

        Clears the lock, pending work and the cache and restarts the memory
        guardian. Progressive state survives while the systematic suite or a
        walkthrough is executing and is fully reset otherwise.
        """
        regime = self.monitor.current()
        logger.warning("Emergency reset (regime %s)", regime.value)

        if self.render_lock.held:
            self.render_lock.force_release()
        self._cancel_retry()
        self.scheduler.cancel_all()
        self.scheduler.reset_windows()
        self.cache.clear()

        if regime in (ExecutionRegime.SYSTEMATIC_RUNNING, ExecutionRegime.WALKTHROUGH_RUNNING):
            logger.info("Preserving progressive state during %s", regime.value)
        else:
            self.progressive.reset(force=True)

        self.guardian.manual_reset(restart=True)

        if self.render_lock.try_acquire():
            try:
                self.view.show_system_notice(EMERGENCY_RESET_NOTICE)
            finally:
                self.render_lock.release()

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render_kind(self, kind: UpdateKind, manual: bool = False) -> None:
        if not self.render_lock.acquire_or_recover():
            logger.debug("Render lock busy; retrying %s later", kind.value)
            self._arm_retry(kind)
            return
        try:
            if kind is UpdateKind.TEST_BED:
                self._render_test_bed()
            elif kind is UpdateKind.RESULT:
                self._render_results(manual)
            elif kind is UpdateKind.WALKTHROUGH:
                self._render_walkthrough()
            elif kind is UpdateKind.LIVE:
                self._render_live()
        finally:
            self.render_lock.release()

        if not self.monitor.is_busy():
            self.capabilities.invoke(AFTER_RENDER, kind)

    def _fragment(self, key: str, item_id: str, payload: Any) -> Optional[str]:
        try:
            return self.cache.get(key, lambda: self.renderer.render(payload))
        except CacheGeneratorError as e:
            self.render_failures += 1
            failure = RenderFailureError(item_id, str(e.__cause__ or e))
            logger.error("%s", failure.message)
            return None

    def _render_test_bed(self) -> None:
        if self._test_bed is None:
            logger.debug("%s", DataUnavailableError(UpdateKind.TEST_BED.value).message)
            return
        fragment = self._fragment(f"test_bed:{payload_fingerprint(self._test_bed)}",
                                  "test bed", self._test_bed)
        if fragment is None:
            fragment = error_marker(RenderFailureError("test bed", "see log"))
        self.view.set_test_bed(fragment)

    def _render_results(self, manual: bool = False) -> None:
        walkthrough = self.monitor.current() is ExecutionRegime.WALKTHROUGH_RUNNING
        if walkthrough and not manual:
            # Keep what is on screen; the suite resumes detailed analysis later
            self.view.set_results_notice(WALKTHROUGH_PAUSED_NOTICE)
            return

        if not self._results:
            self.view.set_results({})
            self.view.set_results_notice(PLACEHOLDER_NOTICE)
            return

        fragments: Dict[str, str] = {}
        failed = 0
        for test_id, item in self._results.items():
            if (test_id == self.settings.tiered_test_id
                    and self.progressive.active and not walkthrough):
                item = self.progressive.filter_result(item)
            fragment = self._fragment(f"result:{test_id}:{payload_fingerprint(item)}",
                                      test_id, item)
            if fragment is None:
                failed += 1
                fragment = error_marker(RenderFailureError(test_id, "see log for details"))
            fragments[test_id] = fragment

        self.view.set_results(fragments)
        if failed == len(fragments):
            self.view.set_results_notice(NO_RENDERABLE_NOTICE)
        elif walkthrough:
            self.view.set_results_notice(WALKTHROUGH_PAUSED_NOTICE)
        else:
            self.view.set_results_notice(None)

    def _render_walkthrough(self) -> None:
        if not self._walkthrough:
            logger.debug("%s", DataUnavailableError(UpdateKind.WALKTHROUGH.value).message)
            return
        fragments = {}
        for scenario_id, step in self._walkthrough.items():
            fragment = self._fragment(f"walkthrough:{scenario_id}:{payload_fingerprint(step)}",
                                      scenario_id, step)
            if fragment is None:
                fragment = error_marker(RenderFailureError(scenario_id, "see log for details"))
            fragments[scenario_id] = fragment
        self.view.set_walkthrough(fragments)

    def _render_live(self) -> None:
        if self._live is None:
            return
        fragment = self._fragment(f"live:{payload_fingerprint(self._live)}",
                                  "live comparison", self._live)
        if fragment is not None:
            self.view.set_live(fragment)

    # ------------------------------------------------------------------
    # Recovery paths
    # ------------------------------------------------------------------

    def _arm_retry(self, kind: UpdateKind) -> None:
        self._retry_kinds.add(kind)
        if self._retry_timer is None:
            self._retry_timer = self.timeline.call_later(
                self.settings.render_retry_delay_ms / 1000.0, self._on_retry
            )

    def _on_retry(self) -> None:
        self._retry_timer = None
        kinds = sorted(self._retry_kinds, key=lambda k: k.value)
        self._retry_kinds.clear()
        if self.render_lock.held:
            logger.warning("Render lock still held after %d ms; forcing release",
                           self.settings.render_retry_delay_ms)
            self.render_lock.force_release()
        if self.monitor.is_busy():
            logger.debug("Skipping retry render during %s", self.monitor.current().value)
            return
        for kind in kinds:
            self._render_kind(kind)

    def _cancel_retry(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None
        self._retry_kinds.clear()

    def _on_lock_timeout(self, error: LockTimeoutError) -> None:
        self.capabilities.invoke(LOCK_TIMEOUT, error)
        if self.monitor.is_busy():
            logger.info("Lock timeout during %s; waiting for the next update",
                        self.monitor.current().value)
            return
        logger.info("Retrying display update after lock timeout")
        for kind in UpdateKind:
            self._render_kind(kind)

    def _show_reset_affordance(self, error: RepeatedCleanupFailure) -> None:
        if self.render_lock.acquire_or_recover():
            try:
                self.view.show_system_notice(RESET_AFFORDANCE)
            finally:
                self.render_lock.release()
        else:
            logger.error("Could not surface reset affordance: %s", error.message)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        flags: ExecutionFlags = self.monitor.flags()
        return {
            "regime": self.monitor.current().value,
            "flags": {
                "trials_executing": flags.trials_executing,
                "walkthrough_active": flags.walkthrough_active,
                "walkthrough_running": flags.walkthrough_running,
                "systematic_running": flags.systematic_running,
                "current_tier": flags.current_tier.value if flags.current_tier else None,
            },
            "progressive": self.progressive.status(),
            "cache": self.cache.status(),
            "scheduler": self.scheduler.stats(),
            "render_lock": self.render_lock.status(),
            "guardian": self.guardian.status(),
            "render_failures": self.render_failures,
            "pending_retry": sorted(k.value for k in self._retry_kinds),
            "view_revision": self.view.revision,
            "last_requests": {
                k.value: r.issued_at.isoformat() for k, r in self._last_requests.items()
            },
        }


__all__ = ["DisplayCoordinator"]
