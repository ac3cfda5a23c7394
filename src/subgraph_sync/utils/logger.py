"""
Logging setup for Subgraph Sync.

All modules log through children of the ``subgraph_sync`` logger. Records
may carry ``entity_type``, ``identifier``, ``relation`` and ``store`` extras
naming the record or relation a message is about; the json format emits them
as fields and the plain formats append them.
"""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler


console = Console()

logger = logging.getLogger("subgraph_sync")

_CONTEXT_FIELDS = ("entity_type", "identifier", "relation", "store")
_PLAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    format_style: str = "rich",
    max_file_size_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """
    Configure the package logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to a rotating log file
        format_style: "rich", "json", or "simple"; the log file uses json
            when "json" is selected and the plain format otherwise
        max_file_size_mb: Max log file size before rotation
        backup_count: Number of rotated files to keep
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(log_level)
    logger.propagate = False

    handlers = [_console_handler(format_style)]
    if log_file:
        handlers.append(
            _file_handler(Path(log_file), format_style, max_file_size_mb, backup_count)
        )

    for handler in handlers:
        handler.setLevel(log_level)
        logger.addHandler(handler)


def _console_handler(format_style: str) -> logging.Handler:
    if format_style == "rich":
        handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
        )
        handler.setFormatter(ContextFormatter("%(message)s"))
        return handler

    handler = logging.StreamHandler(sys.stdout)
    if format_style == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ContextFormatter(_PLAIN_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def _file_handler(
    path: Path, format_style: str, max_file_size_mb: int, backup_count: int
) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=max_file_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    if format_style == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(ContextFormatter(_PLAIN_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def _context(record: logging.LogRecord) -> dict[str, object]:
    return {
        name: getattr(record, name)
        for name in _CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class ContextFormatter(logging.Formatter):
    """Plain formatter appending record context as ``[key=value ...]``."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = _context(record)
        if not context:
            return message
        pairs = " ".join(f"{key}={value}" for key, value in context.items())
        return f"{message} [{pairs}]"


class JsonFormatter(logging.Formatter):
    """One JSON object per record, context extras as top-level fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            **_context(record),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


def get_logger(name: str = "subgraph_sync") -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
