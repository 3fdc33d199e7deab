"""Registry of optional display hooks.

Collaborators that may or may not be present (live comparison widgets, a
reset affordance in the host UI, export refresh) register here; callers ask
the registry instead of probing for attributes.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

AFTER_RENDER = "after_render"
MANUAL_RESET_REQUIRED = "manual_reset_required"
LOCK_TIMEOUT = "lock_timeout"


class CapabilityRegistry:
    def __init__(self) -> None:
        self._capabilities: Dict[str, Callable[..., Any]] = {}

    def register(self, name: str, handler: Callable[..., Any]) -> None:
        if name in self._capabilities:
            logger.debug("Replacing capability %s", name)
        self._capabilities[name] = handler

    def unregister(self, name: str) -> None:
        self._capabilities.pop(name, None)

    def is_available(self, name: str) -> bool:
        return name in self._capabilities

    def invoke(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """Call a registered capability; missing capabilities return None.

        Handler errors are logged and contained: an optional hook must not
        break the caller's update path.
        """
        handler = self._capabilities.get(name)
        if handler is None:
            return None
        try:
            return handler(*args, **kwargs)
        except Exception:
            logger.exception("Capability %s failed", name)
            return None

    def names(self) -> List[str]:
        return sorted(self._capabilities)


__all__ = [
    "AFTER_RENDER",
    "MANUAL_RESET_REQUIRED",
    "LOCK_TIMEOUT",
    "CapabilityRegistry",
]
