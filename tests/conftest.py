"""Shared fixtures for harnessview tests."""

import os

import pytest

from harnessview.coordination.execution_state import ExecutionStateMonitor, FlagBoard
from harnessview.coordination.timeline import ManualTimeline
from harnessview.settings import HarnessSettings


@pytest.fixture
def flags():
    """Mutable execution flags, idle by default."""
    return FlagBoard()


@pytest.fixture
def monitor(flags):
    return ExecutionStateMonitor(flags.snapshot)


@pytest.fixture
def timeline():
    """Deterministic timeline starting at t=0."""
    return ManualTimeline()


@pytest.fixture
def settings(monkeypatch, tmp_path):
    """Default settings isolated from the environment and any .env file."""
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.upper().startswith("HARNESSVIEW_"):
            monkeypatch.delenv(name, raising=False)
    return HarnessSettings()
