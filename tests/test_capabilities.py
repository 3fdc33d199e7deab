"""Unit tests for the optional hook registry."""

import logging
from unittest.mock import Mock

from harnessview.coordination.capabilities import AFTER_RENDER, CapabilityRegistry


class TestCapabilityRegistry:
    """Test registration and contained invocation of hooks."""

    def test_missing_capability_returns_none(self):
        registry = CapabilityRegistry()
        assert not registry.is_available(AFTER_RENDER)
        assert registry.invoke(AFTER_RENDER, "result") is None

    def test_invoke_passes_arguments(self):
        registry = CapabilityRegistry()
        handler = Mock(return_value=42)
        registry.register(AFTER_RENDER, handler)

        assert registry.invoke(AFTER_RENDER, "result", extra=True) == 42
        handler.assert_called_once_with("result", extra=True)

    def test_handler_errors_are_contained(self, caplog):
        registry = CapabilityRegistry()
        registry.register(AFTER_RENDER, Mock(side_effect=RuntimeError("widget gone")))

        with caplog.at_level(logging.ERROR, logger="harnessview.coordination.capabilities"):
            assert registry.invoke(AFTER_RENDER) is None
        assert "Capability after_render failed" in caplog.text

    def test_unregister_and_names(self):
        registry = CapabilityRegistry()
        registry.register("b", Mock())
        registry.register("a", Mock())
        assert registry.names() == ["a", "b"]
        registry.unregister("a")
        registry.unregister("missing")
        assert registry.names() == ["b"]
