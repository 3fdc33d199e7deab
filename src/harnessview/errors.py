"""Error taxonomy for the display coordination layer.

Failures local to one item or operation are contained by the component that
sees them; these classes give each failure mode a name so it can be logged,
counted and surfaced consistently.
"""

from __future__ import annotations

from typing import Optional


class HarnessViewError(Exception):
    """Base class for all harnessview errors."""

    #: Short, actionable suggestion shown next to the message on the surface.
    hint: Optional[str] = None

    def __init__(self, message: str, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if hint is not None:
            self.hint = hint


class DataUnavailableError(HarnessViewError):
    """Raised when there is no payload to render for an update kind."""

    hint = "Run tests to populate results, or use force refresh."

    def __init__(self, kind: str):
        super().__init__(f"No data available for '{kind}' updates.")
        self.kind = kind


class RenderFailureError(HarnessViewError):
    """Raised when the renderer fails for a single result item."""

    hint = "This item is skipped; other results are still shown."

    def __init__(self, item_id: str, details: str):
        super().__init__(f"Error rendering {item_id}: {details}")
        self.item_id = item_id
        self.details = details


class LockTimeoutError(HarnessViewError):
    """Raised when the render lock is held past its watchdog timeout."""

    hint = "The lock was force-released; use reset if the display stays stale."

    def __init__(self, held_for_ms: float, timeout_ms: float):
        super().__init__(
            f"Render lock held for {held_for_ms:.0f}ms (timeout {timeout_ms:.0f}ms)."
        )
        self.held_for_ms = held_for_ms
        self.timeout_ms = timeout_ms


class CacheGeneratorError(HarnessViewError):
    """Raised when a template generator fails; the result is never cached."""

    def __init__(self, key: str, details: str):
        super().__init__(f"Template generation failed for '{key}': {details}")
        self.key = key


class RepeatedCleanupFailure(HarnessViewError):
    """Raised when memory cleanup keeps failing and auto-retry has stopped."""

    hint = "Automatic cleanup is paused; run a manual reset to resume."

    def __init__(self, failures: int):
        super().__init__(f"Memory cleanup failed {failures} times in a row.")
        self.failures = failures


class InvalidPayloadError(HarnessViewError):
    """Raised when an update payload does not match the schema for its kind."""

    def __init__(self, kind: str, details: str):
        super().__init__(f"Invalid payload for '{kind}' update: {details}")
        self.kind = kind


__all__ = [
    "HarnessViewError",
    "DataUnavailableError",
    "RenderFailureError",
    "LockTimeoutError",
    "CacheGeneratorError",
    "RepeatedCleanupFailure",
    "InvalidPayloadError",
]
