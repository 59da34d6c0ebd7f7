"""Tests for structured logging."""

from __future__ import annotations

import json
import logging

import pytest
import structlog
from structlog.testing import capture_logs

from migrationpilot import configure_logging, get_logger


@pytest.fixture(autouse=True)
def restore_logging():
    """Put structlog and the root logger back the way they were."""
    saved = structlog.get_config()
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    structlog.configure(**saved)
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:
    def test_json_output(self, capsys):
        configure_logging("info", json=True)
        get_logger("migrationpilot.test").info("analysis_complete", statements=3)

        lines = [line for line in capsys.readouterr().err.splitlines() if line]
        data = json.loads(lines[-1])
        assert data["event"] == "analysis_complete"
        assert data["statements"] == 3
        assert data["level"] == "info"
        assert "timestamp" in data

    def test_level_filters_events(self, capsys):
        configure_logging("WARNING", json=True)
        logger = get_logger("migrationpilot.test")
        logger.debug("hidden")
        logger.warning("shown")

        err = capsys.readouterr().err
        assert "hidden" not in err
        assert "shown" in err

    def test_unknown_level_falls_back_to_warning(self):
        configure_logging("chatty")
        assert logging.getLogger().level == logging.WARNING

    def test_console_renderer(self, capsys):
        configure_logging("DEBUG")
        get_logger().debug("nested_begin", line=2)
        assert "nested_begin" in capsys.readouterr().err

    def test_replaces_root_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1


class TestGetLogger:
    def test_binds_name(self):
        with capture_logs() as logs:
            get_logger("migrationpilot.locks").debug("unclassified_statement", kind="x")
        (entry,) = logs
        assert entry["logger"] == "migrationpilot.locks"
        assert (entry["event"], entry["kind"], entry["log_level"]) == ("unclassified_statement", "x", "debug")

    def test_unnamed(self):
        with capture_logs() as logs:
            get_logger().info("hello")
        assert "logger" not in logs[0]
