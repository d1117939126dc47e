"""Structured logging for storyloom.

Engine modules log snake_case events (``graph_loaded``, ``session_moved``,
``layout_computed``) with key-value context through :func:`get_logger`.
Two sinks exist:

- the console: a rich handler on stderr, WARNING by default, INFO with
  ``-v`` and DEBUG with ``-vv``
- a JSONL file (``debug.jsonl``) written when the CLI runs with ``--log``;
  it records every event at DEBUG regardless of console verbosity

The CLI binds the story being worked on with :func:`bind_story`, so each
event in either sink carries a ``story`` field.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from structlog.typing import Processor

LOG_FILENAME = "debug.jsonl"

_CONSOLE_LEVELS = {0: logging.WARNING, 1: logging.INFO}

_configured = False
_file_handler: logging.FileHandler | None = None


def _record_to_entry(record: logging.LogRecord) -> dict[str, Any]:
    """Flatten a log record into one JSONL object.

    structlog hands its event dict over in ``record.msg``; the event name
    becomes ``message`` and the rest of the context becomes top-level keys.
    Plain stdlib records only contribute their formatted message.
    """
    entry: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "level": record.levelname,
        "logger": record.name,
    }
    if not isinstance(record.msg, dict):
        entry["message"] = record.getMessage()
        return entry

    context = {k: v for k, v in record.msg.items() if k not in ("level", "timestamp")}
    entry["message"] = context.pop("event", "")
    entry.update(context)
    return entry


class JSONLFileHandler(logging.FileHandler):
    """File handler writing one JSON object per event."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(_record_to_entry(record), default=str, ensure_ascii=False)
            if self.stream is None:
                self.stream = self._open()
            self.stream.write(line + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


def _console_handler(verbosity: int) -> RichHandler:
    # Story text is arbitrary; never interpret it as rich markup.
    return RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity >= 2,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
        level=_CONSOLE_LEVELS.get(verbosity, logging.DEBUG),
    )


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    log_dir: Path | None = None,
) -> Path | None:
    """Configure console and optional file logging.

    Safe to call repeatedly; a previous file handler is closed first.

    Args:
        verbosity: 0=WARNING (default), 1=INFO, 2+=DEBUG on the console.
        log_to_file: If True, also append every event to ``log_dir/debug.jsonl``.
        log_dir: Directory for the JSONL log. Required if log_to_file=True.

    Returns:
        Path of the JSONL log file, or None when file logging is off.

    Raises:
        ValueError: If log_to_file=True but log_dir is not provided.
    """
    global _configured, _file_handler

    if log_to_file and log_dir is None:
        raise ValueError("log_dir is required when log_to_file=True")

    close_file_logging()

    handlers: list[logging.Handler] = [_console_handler(verbosity)]
    log_path: Path | None = None
    if log_to_file and log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / LOG_FILENAME
        _file_handler = JSONLFileHandler(str(log_path), mode="a", encoding="utf-8")
        _file_handler.setLevel(logging.DEBUG)
        handlers.append(_file_handler)

    root_level = logging.DEBUG if (verbosity > 0 or log_to_file) else logging.WARNING
    logging.basicConfig(level=root_level, format="%(message)s", handlers=handlers, force=True)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )

    _configured = True
    return log_path


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Get a structured logger, configuring defaults on first use.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Bound logger instance.
    """
    if not _configured:
        configure_logging()

    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def bind_story(story: str) -> None:
    """Attach ``story=<story>`` to every event logged from now on."""
    structlog.contextvars.bind_contextvars(story=story)


def close_file_logging() -> None:
    """Close the JSONL file handler, if any."""
    global _file_handler
    if _file_handler is not None:
        _file_handler.close()
        _file_handler = None
