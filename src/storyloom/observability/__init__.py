"""Observability module for storyloom.

Provides structured logging for the engine and the CLI.
"""

from storyloom.observability.logging import (
    LOG_FILENAME,
    bind_story,
    close_file_logging,
    configure_logging,
    get_logger,
)

__all__ = [
    "LOG_FILENAME",
    "bind_story",
    "close_file_logging",
    "configure_logging",
    "get_logger",
]
