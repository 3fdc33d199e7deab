"""Command line entry point for harnessview."""

from __future__ import annotations

import asyncio
import json
from typing import List, Optional

import click
from rich.console import Console
from rich.live import Live

from harnessview import __version__
from harnessview.coordination.capabilities import AFTER_RENDER
from harnessview.coordination.execution_state import ExecutionStateMonitor
from harnessview.coordinator import DisplayCoordinator
from harnessview.logging_config import attach_regime_context, configure_logging
from harnessview.models import ResultItem, Tier, UpdateKind, VariantResult
from harnessview.settings import HarnessSettings

DEFAULT_TESTS = ["T1", "T5", "T10"]


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__, prog_name="harnessview")
@click.option("--log-level", default=None, help="Log level (override env)")
@click.option("--log-format", default=None, type=click.Choice(["json", "text"]))
@click.pass_context
def main(ctx, log_level, log_format) -> None:
    """harnessview - execution-aware live display for test harness results."""
    settings = HarnessSettings()
    configure_logging(level=log_level or settings.log_level,
                      fmt=log_format or settings.log_format)
    ctx.obj = settings


@main.command("settings")
@click.pass_obj
def settings_cmd(settings: HarnessSettings) -> None:
    """Print the effective configuration as JSON."""
    click.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@main.command("simulate")
@click.option("--model", "model_name", default="demo-model", show_default=True)
@click.option("--tiers", default="Q1,Q4,Q8", show_default=True,
              help="Comma separated tiers for the tiered test")
@click.option("--trials", default=3, show_default=True, type=click.IntRange(1, 50))
@click.option("--walkthrough/--no-walkthrough", default=False,
              help="Run a short domain walkthrough after the suite")
@click.option("--live/--no-live", default=False, help="Render inside a live terminal display")
@click.option("--step-delay", default=0.05, show_default=True, type=float,
              help="Seconds between simulated trials")
@click.pass_obj
def simulate(settings: HarnessSettings, model_name: str, tiers: str, trials: int,
             walkthrough: bool, live: bool, step_delay: float) -> None:
    """Replay a scripted systematic run through the display coordinator."""
    try:
        tier_list = [Tier(t.strip().upper()) for t in tiers.split(",") if t.strip()]
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--tiers") from e

    status = asyncio.run(_simulate(settings, model_name, tier_list, trials,
                                   walkthrough, live, step_delay))
    click.echo(json.dumps(status, indent=2, default=str))


async def _simulate(settings: HarnessSettings, model_name: str, tiers: List[Tier],
                    trials: int, walkthrough: bool, live: bool,
                    step_delay: float) -> dict:
    coordinator = DisplayCoordinator(settings=settings)
    attach_regime_context(
        lambda: ExecutionStateMonitor.classify(coordinator.monitor.flags()).value
    )
    console = Console(stderr=True)
    live_display: Optional[Live] = None
    if live:
        live_display = Live(coordinator.view.renderable(), console=console,
                            auto_refresh=False, transient=False)
        live_display.start()
        coordinator.capabilities.register(
            AFTER_RENDER,
            lambda _kind: live_display.update(coordinator.view.renderable(), refresh=True),
        )

    coordinator.start()
    try:
        await _run_suite(coordinator, model_name, tiers, trials, step_delay)
        if walkthrough:
            await _run_walkthrough(coordinator, step_delay)
        # Let the tier grace period and trailing updates settle
        await asyncio.sleep(settings.progressive_grace_ms / 1000.0 + max(step_delay, 0.05))
        coordinator.force_refresh()
    finally:
        coordinator.stop()
        if live_display is not None:
            live_display.update(coordinator.view.renderable(), refresh=True)
            live_display.stop()
    return coordinator.get_status()


async def _run_trial(coordinator: DisplayCoordinator, step_delay: float) -> None:
    coordinator.flags.set(trials_executing=True)
    try:
        await asyncio.sleep(step_delay)
    finally:
        coordinator.flags.set(trials_executing=False)


async def _run_suite(coordinator: DisplayCoordinator, model_name: str,
                     tiers: List[Tier], trials: int, step_delay: float) -> None:
    flags = coordinator.flags
    tiered_id = coordinator.settings.tiered_test_id
    tests = [t for t in DEFAULT_TESTS if t != tiered_id] + [tiered_id]

    flags.set(systematic_running=True)
    coordinator.activate_progressive(tiers)

    for index, test_id in enumerate(tests):
        coordinator.schedule_update(UpdateKind.TEST_BED, {
            "model_name": model_name,
            "selected_tests": tests,
            "selected_tiers": tiers,
            "current_test": test_id,
            "completed_tests": index,
            "status": "running",
        })
        if test_id == tiered_id:
            await _run_tiered_test(coordinator, test_id, tiers, trials, step_delay)
            continue

        variant = VariantResult(name=f"{test_id}-baseline")
        for trial in range(1, trials + 1):
            await _run_trial(coordinator, step_delay)
            variant.trials.append({"trial": trial, "passed": trial % 3 != 0})
            coordinator.schedule_update(UpdateKind.RESULT, ResultItem(
                test_id=test_id, description="Systematic test", variants=[variant],
            ))

    flags.set(systematic_running=False, current_tier=None)
    coordinator.schedule_update(UpdateKind.TEST_BED, {
        "model_name": model_name,
        "selected_tests": tests,
        "selected_tiers": tiers,
        "completed_tests": len(tests),
        "status": "completed",
    })


async def _run_tiered_test(coordinator: DisplayCoordinator, test_id: str,
                           tiers: List[Tier], trials: int, step_delay: float) -> None:
    item = ResultItem(test_id=test_id, description="Tiered capability comparison")
    for tier in tiers:
        coordinator.flags.set(current_tier=tier)
        coordinator.mark_tier_executing(tier)
        variant = VariantResult(name=f"MCD-{tier.value}", tier=tier)
        item.variants.append(variant)
        for trial in range(1, trials + 1):
            await _run_trial(coordinator, step_delay)
            variant.trials.append({"trial": trial, "passed": True})
            coordinator.schedule_update(UpdateKind.LIVE, {
                "tier": tier,
                "metrics": {"accuracy": trial / trials, "latency_s": 0.2 * (tier.rank + 1)},
            })
            coordinator.schedule_update(UpdateKind.RESULT, item.model_copy(deep=True))
        item.tier_data[tier] = {"accuracy": 1.0, "trials": trials}
        coordinator.schedule_update(UpdateKind.RESULT, item.model_copy(deep=True))
        coordinator.mark_tier_completed(tier)
    coordinator.flags.set(current_tier=None)


async def _run_walkthrough(coordinator: DisplayCoordinator, step_delay: float) -> None:
    flags = coordinator.flags
    flags.set(walkthrough_active=True, walkthrough_running=True)
    try:
        for domain in ("medical", "legal"):
            for step in range(1, 4):
                await asyncio.sleep(step_delay)
                coordinator.schedule_update(UpdateKind.WALKTHROUGH, {
                    "domain": domain,
                    "scenario": f"{domain}-triage",
                    "step": step,
                    "status": "completed" if step == 3 else "running",
                })
    finally:
        flags.set(walkthrough_active=False, walkthrough_running=False)


if __name__ == "__main__":
    main()
