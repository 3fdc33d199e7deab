"""Rendering collaborators: the default fragment renderer and the render surface."""

from .result_renderer import ResultRenderer, RichResultRenderer, error_marker
from .results_view import ResultsView

__all__ = ["ResultRenderer", "RichResultRenderer", "ResultsView", "error_marker"]
