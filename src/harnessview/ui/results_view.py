"""The shared render surface.

The view holds the current fragment of every display section. It is the one
shared mutable resource of the display layer: every mutator checks that the
render lock is held, so a write outside the lock fails loudly instead of
racing a render in progress.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional

from rich.console import Group
from rich.panel import Panel
from rich.text import Text

PLACEHOLDER_NOTICE = (
    "[dim]No results yet. Run tests to populate trial-by-trial results "
    "and tier comparisons.[/dim]"
)
WALKTHROUGH_PAUSED_NOTICE = (
    "[yellow]Walkthrough active - detailed analysis resumes after the walkthrough completes.[/yellow]"
)


class ResultsView:
    def __init__(self, lock_check: Optional[Callable[[], bool]] = None):
        self._lock_check = lock_check
        self.test_bed: Optional[str] = None
        self.results: "OrderedDict[str, str]" = OrderedDict()
        self.results_notice: Optional[str] = PLACEHOLDER_NOTICE
        self.walkthrough: "OrderedDict[str, str]" = OrderedDict()
        self.live: Optional[str] = None
        self.system_notice: Optional[str] = None
        self.revision = 0

    def _mutating(self) -> None:
        if self._lock_check is not None and not self._lock_check():
            raise RuntimeError("render surface mutated without holding the render lock")
        self.revision += 1

    def set_test_bed(self, fragment: str) -> None:
        self._mutating()
        self.test_bed = fragment

    def set_results(self, fragments: Dict[str, str]) -> None:
        self._mutating()
        self.results = OrderedDict(fragments)

    def set_results_notice(self, notice: Optional[str]) -> None:
        self._mutating()
        self.results_notice = notice

    def set_walkthrough(self, fragments: Dict[str, str]) -> None:
        self._mutating()
        self.walkthrough = OrderedDict(fragments)

    def set_live(self, fragment: str) -> None:
        self._mutating()
        self.live = fragment

    def show_system_notice(self, notice: Optional[str]) -> None:
        self._mutating()
        self.system_notice = notice

    def snapshot(self) -> Dict[str, Any]:
        return {
            "revision": self.revision,
            "test_bed": self.test_bed,
            "results": dict(self.results),
            "results_notice": self.results_notice,
            "walkthrough": dict(self.walkthrough),
            "live": self.live,
            "system_notice": self.system_notice,
        }

    def renderable(self) -> Group:
        panels: List[Any] = []
        if self.system_notice:
            panels.append(Panel(Text.from_markup(self.system_notice), title="System",
                                border_style="red"))
        if self.test_bed:
            panels.append(Panel(Text.from_markup(self.test_bed), title="Test bed",
                                border_style="blue"))
        if self.live:
            panels.append(Panel(Text.from_markup(self.live), title="Live comparison"))

        body: List[Any] = []
        if self.results_notice:
            body.append(Text.from_markup(self.results_notice))
        body.extend(Text.from_markup(fragment) for fragment in self.results.values())
        panels.append(Panel(Group(*body), title="Detailed results", border_style="cyan"))

        if self.walkthrough:
            panels.append(Panel(
                Group(*(Text.from_markup(f) for f in self.walkthrough.values())),
                title="Domain walkthroughs", border_style="green",
            ))
        return Group(*panels)

    def __rich__(self) -> Group:
        return self.renderable()


__all__ = ["ResultsView", "PLACEHOLDER_NOTICE", "WALKTHROUGH_PAUSED_NOTICE"]
