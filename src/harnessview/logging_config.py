"""Structured logging configuration for harnessview.

JSON or text output on stderr, configured from HarnessSettings or the CLI.
Once a coordinator exists, :func:`attach_regime_context` stamps every record
with the execution regime in effect when it was logged, so throttle and
cache decisions can be read against the regime that caused them.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, TextIO

from pythonjsonlogger import jsonlogger

JSON_FIELDS = ("asctime", "levelname", "name", "regime", "message", "funcName", "lineno")
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(regime)s] %(name)s: %(message)s"

# Libraries that are chatty at DEBUG and irrelevant to display decisions
QUIET_LOGGERS = ("asyncio", "markdown_it")


class RegimeContextFilter(logging.Filter):
    """Adds a ``regime`` attribute to every record passing the handler."""

    def __init__(self, regime_source: Optional[Callable[[], str]] = None):
        super().__init__()
        self.regime_source = regime_source

    def filter(self, record: logging.LogRecord) -> bool:
        regime = "-"
        if self.regime_source is not None:
            try:
                regime = self.regime_source()
            except Exception:
                regime = "unavailable"
        record.regime = regime
        return True


def _build_json_formatter() -> logging.Formatter:
    fmt = " ".join(f"%({f})s" for f in JSON_FIELDS)
    return jsonlogger.JsonFormatter(fmt=fmt)


def configure_logging(level: str = "INFO", fmt: str = "json",
                      stream: Optional[TextIO] = None) -> logging.Handler:
    """Install a single harnessview handler on the root logger and return it."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(log_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(stream)
    handler.addFilter(RegimeContextFilter())
    if fmt.lower() == "json":
        handler.setFormatter(_build_json_formatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z"))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
    return handler


def attach_regime_context(regime_source: Callable[[], str]) -> int:
    """Point every root handler's regime filter at ``regime_source``.

    Returns the number of handlers updated.
    """
    updated = 0
    for handler in logging.getLogger().handlers:
        for f in handler.filters:
            if isinstance(f, RegimeContextFilter):
                f.regime_source = regime_source
                updated += 1
    return updated


__all__ = ["RegimeContextFilter", "attach_regime_context", "configure_logging"]
