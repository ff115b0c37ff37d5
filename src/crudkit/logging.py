"""
crudkit logging infrastructure.

Provides:
- Console output in a compact human-readable format
- JSONL file output (one JSON object per line) for machine consumption
- Component loggers ("data", "sql", "schema") tagging every record

Log Format Design:
- File: <log_dir>/crudkit.log, rotated by size
- Each line carries timestamp, level, component, message and optional context
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from crudkit.config import CrudSettings

ROOT_LOGGER_NAME = "crudkit"


# =============================================================================
# Formatters
# =============================================================================


def _context_of(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, "context", None) or {}


class JSONLFormatter(logging.Formatter):
    """
    Formats log records as JSON Lines.

    Example output:
    {"timestamp":"2024-01-15T10:30:45.123+00:00","level":"WARNING","component":"data","message":"Update rejected","context":{"table":"book","id":"..."}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "component": getattr(record, "component", ROOT_LOGGER_NAME),
            "message": record.getMessage(),
        }
        if context := _context_of(record):
            entry["context"] = context
        # conflicts and driver errors point back at the raising call site
        if record.levelno >= logging.WARNING:
            entry["source"] = {"file": record.pathname, "line": record.lineno}
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """One line per record: time, component, level and key=value context."""

    def format(self, record: logging.LogRecord) -> str:
        component = getattr(record, "component", ROOT_LOGGER_NAME)
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"[{timestamp}] [{component}] {record.levelname}: {record.getMessage()}"
        if context := _context_of(record):
            line += " (" + " ".join(f"{k}={v}" for k, v in context.items()) + ")"
        return line


# =============================================================================
# Logger Setup
# =============================================================================


_loggers: dict[str, logging.Logger] = {}
_log_dir: Path | None = None


def setup_logging(
    log_dir: Path | str | None = ".crudkit/logs",
    level: int | str = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,  # 5MB
    backup_count: int = 3,
) -> Path | None:
    """
    Initialize the logging infrastructure.

    Args:
        log_dir: Directory for the JSONL log file, or None for console only
        level: Minimum log level (int or level name)
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep

    Returns:
        Path to the log directory, or None when file logging is disabled
    """
    global _log_dir

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ConsoleFormatter())
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if log_dir is None:
        _log_dir = None
        return None

    _log_dir = Path(log_dir)
    _log_dir.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        _log_dir / "crudkit.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(JSONLFormatter())
    file_handler.setLevel(level)
    root_logger.addHandler(file_handler)

    return _log_dir


class _ComponentFilter(logging.Filter):
    """Stamps the component name onto records that lack one."""

    def __init__(self, component: str):
        super().__init__()
        self.component = component

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "component"):
            record.component = self.component
        return True


def get_logger(component: str) -> logging.Logger:
    """
    Get a logger for a specific component.

    Args:
        component: Component name (e.g., "data", "sql", "schema")

    Returns:
        Logger named crudkit.<component> tagging records with the component
    """
    if component in _loggers:
        return _loggers[component]

    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component.lower().replace(' ', '_')}")
    logger.addFilter(_ComponentFilter(component))
    _loggers[component] = logger
    return logger


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **context: Any,
) -> None:
    """
    Log a message with structured context data.

    Args:
        logger: Logger instance
        level: Logging level (logging.INFO, logging.ERROR, etc.)
        message: Human-readable message
        **context: Structured context data (included in JSONL output)
    """
    extra = {"context": context} if context else {}
    logger.log(level, message, extra=extra)


def get_log_file() -> Path | None:
    """Get the path to the JSONL log file, if file logging is active."""
    if _log_dir:
        return _log_dir / "crudkit.log"
    return None


def configure_logging(settings: CrudSettings) -> Path | None:
    """Initialize logging from the log_dir and log_level settings."""
    return setup_logging(settings.log_dir, settings.log_level)
