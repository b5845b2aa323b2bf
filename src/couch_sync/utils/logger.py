"""
Logging setup for Couch Sync.

Provides structured logging with:
- Rich colored console output
- File logging with rotation
- JSON format carrying pipe/table context from ``extra``
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

from couch_sync.config import LoggingConfig


# Global console for rich output
console = Console()

# Package logger
logger = logging.getLogger("couch_sync")

RUN_LOGGER = "couch_sync.run"

# HTTP client libraries log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRIBUTES = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    format_style: str = "rich",
    max_file_size_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """
    Configure the ``couch_sync`` logger hierarchy.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        format_style: "rich", "json", or "simple"
        max_file_size_mb: Max log file size before rotation
        backup_count: Number of backup files to keep
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logger.handlers.clear()
    logger.setLevel(log_level)

    handler = _console_handler(format_style)
    handler.setLevel(log_level)
    logger.addHandler(handler)

    if log_file:
        file_path = Path(log_file)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setLevel(log_level)
        if format_style == "json":
            file_handler.setFormatter(JsonFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    # Only surface request logs when debugging
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(
            logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
        )


def setup_logging_from_config(config: LoggingConfig, quiet: bool = False) -> None:
    """Configure logging from the ``[logging]`` settings section."""
    setup_logging(
        level="WARNING" if quiet else config.level,
        log_file=config.file,
        format_style=config.format,
        max_file_size_mb=config.max_file_size_mb,
        backup_count=config.backup_count,
    )


def _console_handler(format_style: str) -> logging.Handler:
    if format_style == "rich":
        handler: logging.Handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        return handler

    handler = logging.StreamHandler(sys.stdout)
    if format_style == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)-8s | %(message)s", datefmt=DATE_FORMAT)
        )
    return handler


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra`` fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class RunLogAdapter(logging.LoggerAdapter):
    """
    Attaches the pipe id to every record logged during a run.

    Explicit ``extra`` passed to a call is merged in, so per-table stats
    logged by the dispatcher keep their own keys.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def get_run_logger(pipe_id: str) -> RunLogAdapter:
    """Logger handed to connectors and steps through the run context."""
    return RunLogAdapter(logging.getLogger(RUN_LOGGER), {"pipe": pipe_id})


def get_logger(name: str = "couch_sync") -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
