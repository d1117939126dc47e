"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest

from storyloom.observability import (
    LOG_FILENAME,
    bind_story,
    close_file_logging,
    configure_logging,
    get_logger,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_configure_logging_sets_level_warning() -> None:
    """Default verbosity (0) sets WARNING level."""
    configure_logging(verbosity=0)

    assert logging.getLogger().level == logging.WARNING


def test_configure_logging_verbose_opens_root_level() -> None:
    """verbosity=1 drops the root level to DEBUG; the console handler filters."""
    configure_logging(verbosity=1)

    assert logging.getLogger().level == logging.DEBUG


def test_get_logger_returns_bound_logger() -> None:
    """get_logger returns a structlog logger with expected methods."""
    logger = get_logger(__name__)

    assert hasattr(logger, "info")
    assert hasattr(logger, "debug")
    assert hasattr(logger, "warning")


def test_get_logger_auto_configures() -> None:
    """get_logger configures logging if not already done."""
    import storyloom.observability.logging as log_module

    log_module._configured = False

    logger = get_logger("test")

    assert log_module._configured is True
    assert logger is not None


def test_configure_logging_with_file_logging(tmp_path: Path) -> None:
    """File logging creates the log directory."""
    logs_dir = tmp_path / "logs"
    log_path = configure_logging(verbosity=0, log_to_file=True, log_dir=logs_dir)

    assert logs_dir.exists()
    assert log_path == logs_dir / LOG_FILENAME
    close_file_logging()


def test_configure_logging_without_file_logging(tmp_path: Path) -> None:
    """Without file logging flag, the log directory is not created."""
    logs_dir = tmp_path / "logs"
    assert configure_logging(verbosity=0, log_to_file=False, log_dir=logs_dir) is None

    assert not logs_dir.exists()


def test_configure_logging_requires_log_dir_for_file_logging() -> None:
    """log_to_file=True without log_dir raises ValueError."""
    with pytest.raises(ValueError, match="log_dir is required"):
        configure_logging(verbosity=0, log_to_file=True, log_dir=None)


def test_configure_logging_reconfiguration_closes_handler(tmp_path: Path) -> None:
    """Reconfiguring logging closes previous file handler."""
    import storyloom.observability.logging as log_module

    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)
    first_handler = log_module._file_handler
    assert first_handler is not None

    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)
    second_handler = log_module._file_handler

    assert first_handler.stream is None or first_handler.stream.closed
    assert second_handler is not None
    close_file_logging()


def test_close_file_logging_clears_handler(tmp_path: Path) -> None:
    """close_file_logging closes handler and clears reference."""
    import storyloom.observability.logging as log_module

    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)
    assert log_module._file_handler is not None

    close_file_logging()

    assert log_module._file_handler is None


def test_jsonl_file_handler_writes_structlog_context(tmp_path: Path) -> None:
    """JSONLFileHandler extracts structlog context into JSONL fields."""
    configure_logging(verbosity=2, log_to_file=True, log_dir=tmp_path)

    logger = get_logger("test.context")
    logger.info("node_renamed", old_id="2", new_id="hold", choices_rewritten=1)

    close_file_logging()

    log_file = tmp_path / "debug.jsonl"
    assert log_file.exists()

    found = False
    with log_file.open(encoding="utf-8") as f:
        for line in f:
            entry = json.loads(line)
            if entry.get("message") == "node_renamed":
                found = True
                assert entry["new_id"] == "hold"
                assert entry["choices_rewritten"] == 1
                assert entry["level"] == "INFO"
                break

    assert found, "Log entry with structlog context not found in JSONL"


def test_bound_story_reaches_file_log(tmp_path: Path) -> None:
    """bind_story adds a story field to every event in the JSONL log."""
    log_path = configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)
    assert log_path is not None
    bind_story("night-shift.json")

    get_logger("test.story").debug("session_moved", node_id="2")
    close_file_logging()

    entries = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    moved = [e for e in entries if e["message"] == "session_moved"]
    assert moved
    assert moved[0]["story"] == "night-shift.json"
    assert moved[0]["node_id"] == "2"
    assert moved[0]["level"] == "DEBUG"
