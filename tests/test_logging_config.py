"""Tests for log routing."""

import json
import logging

import pytest
import structlog

from db_transfer_mcp.core.logging_config import LOG_FILES, get_middleware_logger, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    saved_root = (list(root.handlers), root.level)
    saved = {name: list(logging.getLogger(name).handlers) for name in LOG_FILES}
    yield
    for name, handlers in saved.items():
        for handler in logging.getLogger(name).handlers:
            handler.close()
        logging.getLogger(name).handlers[:] = handlers
    root.handlers[:], level = saved_root
    root.setLevel(level)
    structlog.reset_defaults()


def _read_events(path):
    return [json.loads(line)["event"] for line in path.read_text().splitlines() if line]


def test_events_are_split_by_logger(tmp_path, restore_logging):
    setup_logging(log_dir=tmp_path, log_level="DEBUG")

    structlog.get_logger("db_transfer_mcp.core.store").info("Transfer record created")
    get_middleware_logger().info("Tool call failed")

    engine_events = _read_events(tmp_path / "transfer_engine.log")
    middleware_events = _read_events(tmp_path / "middleware.log")
    assert "Logging system initialized" in engine_events
    assert "Transfer record created" in engine_events
    assert "Tool call failed" not in engine_events
    assert middleware_events == ["Tool call failed"]


def test_repeated_setup_does_not_duplicate_handlers(tmp_path, restore_logging):
    setup_logging(log_dir=tmp_path)
    setup_logging(log_dir=tmp_path)

    assert len(logging.getLogger("db_transfer_mcp").handlers) == 1
    assert len(logging.getLogger().handlers) == 1
