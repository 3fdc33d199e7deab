"""Tests for the click command line interface."""

import json
import logging

import pytest
from click.testing import CliRunner

from harnessview import __version__
from harnessview.cli import main


@pytest.fixture(autouse=True)
def restore_logging():
    """The CLI reconfigures the root logger; put it back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def runner(settings):
    return CliRunner()


class TestCli:
    """Test the harnessview commands."""

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_settings_json(self, runner):
        result = runner.invoke(main, ["--log-level", "ERROR", "settings"])
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["render_lock_timeout_ms"] == 3000
        assert data["cache"]["tier_q8"]["capacity"] == 5
        assert data["throttle"]["q8_intervals_ms"]["test_bed"] == 5000

    def test_settings_respect_environment(self, runner):
        result = runner.invoke(main, ["--log-level", "ERROR", "settings"],
                               env={"HARNESSVIEW_TIERED_TEST_ID": "T3"})
        assert json.loads(result.output)["tiered_test_id"] == "T3"

    def test_simulate(self, runner):
        result = runner.invoke(
            main,
            ["--log-level", "ERROR", "simulate", "--trials", "2", "--step-delay", "0",
             "--walkthrough"],
            env={"HARNESSVIEW_PROGRESSIVE_GRACE_MS": "0"},
        )
        assert result.exit_code == 0, result.output
        status = json.loads(result.output)
        assert status["regime"] == "idle"
        assert status["progressive"]["active"] is False
        assert status["render_lock"]["held"] is False
        assert status["guardian"]["running"] is False
        assert status["scheduler"]["result"]["executed"] >= 1

    def test_simulate_rejects_unknown_tier(self, runner):
        result = runner.invoke(main, ["--log-level", "ERROR", "simulate", "--tiers", "Q2"])
        assert result.exit_code != 0
        assert "--tiers" in result.output
