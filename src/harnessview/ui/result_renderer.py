"""Fragment generation for update payloads.

A renderer is a pure function from one payload to one fragment. The
coordination layer treats fragments as opaque; the default renderer emits
Rich console markup that :class:`~harnessview.ui.results_view.ResultsView`
turns into renderables.
"""

from __future__ import annotations

from typing import Any, Protocol

from rich.markup import escape

from ..errors import HarnessViewError
from ..models import LiveComparison, ResultItem, TestBedSnapshot, Tier, WalkthroughStep

TIER_STYLES = {
    Tier.Q1: "bold white on blue",
    Tier.Q4: "bold white on dark_orange",
    Tier.Q8: "bold white on magenta",
}


class ResultRenderer(Protocol):
    def render(self, item: Any) -> str:
        """Return the display fragment for ``item``."""


def tier_badge(tier: Tier) -> str:
    return f"[{TIER_STYLES[tier]}] {tier.value} [/]"


def error_marker(error: HarnessViewError) -> str:
    """Inline notice substituted for an item whose rendering failed."""
    lines = [f"[bold red]⚠ {escape(error.message)}[/bold red]"]
    if error.hint:
        lines.append(f"[dim]{escape(error.hint)}[/dim]")
    return "\n".join(lines)


class RichResultRenderer:
    """Default renderer producing Rich markup per payload kind."""

    def render(self, item: Any) -> str:
        if isinstance(item, ResultItem):
            return self.render_result(item)
        if isinstance(item, TestBedSnapshot):
            return self.render_test_bed(item)
        if isinstance(item, WalkthroughStep):
            return self.render_walkthrough(item)
        if isinstance(item, LiveComparison):
            return self.render_live(item)
        raise TypeError(f"No renderer for {type(item).__name__}")

    def render_test_bed(self, snapshot: TestBedSnapshot) -> str:
        tiers = " ".join(tier_badge(t) for t in snapshot.selected_tiers) or "[dim]none[/dim]"
        current = escape(snapshot.current_test) if snapshot.current_test else "-"
        return "\n".join([
            f"[bold]Model:[/bold] {escape(snapshot.model_name)}",
            f"[bold]Tests:[/bold] {escape(', '.join(snapshot.selected_tests)) or '-'}"
            f"  ({snapshot.completed_tests}/{len(snapshot.selected_tests)} done)",
            f"[bold]Tiers:[/bold] {tiers}",
            f"[bold]Current:[/bold] {current}  [dim]{escape(snapshot.status)}[/dim]",
        ])

    def render_result(self, item: ResultItem) -> str:
        lines = [f"[bold cyan]{escape(item.test_id)}[/bold cyan] {escape(item.description)}"]
        for variant in item.variants:
            passed = sum(1 for t in variant.trials if t.get("passed"))
            badge = tier_badge(variant.tier) + " " if variant.tier else ""
            lines.append(
                f"  {badge}{escape(variant.name)}: {passed}/{len(variant.trials)} trials passed"
            )
        for tier in sorted(item.tier_data, key=lambda t: t.rank):
            metrics = ", ".join(
                f"{escape(str(k))}={escape(str(v))}" for k, v in item.tier_data[tier].items()
            )
            lines.append(f"  {tier_badge(tier)} {metrics}")
        if len(lines) == 1:
            lines.append("  [dim]waiting for tier results...[/dim]")
        return "\n".join(lines)

    def render_walkthrough(self, step: WalkthroughStep) -> str:
        style = {"completed": "green", "failed": "red"}.get(step.status, "yellow")
        detail = f" - {escape(step.detail)}" if step.detail else ""
        return (f"[bold]{escape(step.domain)}[/bold] / {escape(step.scenario)} "
                f"step {step.step} [{style}]{escape(step.status)}[/{style}]{detail}")

    def render_live(self, comparison: LiveComparison) -> str:
        head = tier_badge(comparison.tier) + " " if comparison.tier else ""
        metrics = "  ".join(
            f"{escape(name)}: [bold]{value:.2f}[/bold]"
            for name, value in sorted(comparison.metrics.items())
        )
        return head + (metrics or "[dim]no metrics yet[/dim]")


__all__ = ["ResultRenderer", "RichResultRenderer", "error_marker", "tier_badge"]
