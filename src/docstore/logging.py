"""
docstore logging infrastructure.

Two outputs share one logger tree rooted at ``docstore``:
- Console: short human-readable lines tagged with the component
- File: .docstore/logs/docstore.log in JSONL format, one object per line

Components are plain tags (API, Store, Query, Rules, Auth) attached to each
record by a filter, so call sites just log normally.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

# =============================================================================
# Terminal Colors (respects NO_COLOR)
# =============================================================================

_NO_COLOR = bool(os.environ.get("NO_COLOR")) or not sys.stdout.isatty()


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "" if _NO_COLOR else "\033[0m"
    DIM = "" if _NO_COLOR else "\033[2m"

    DEBUG = "" if _NO_COLOR else "\033[36m"
    WARNING = "" if _NO_COLOR else "\033[33m"
    ERROR = "" if _NO_COLOR else "\033[31m"
    CRITICAL = "" if _NO_COLOR else "\033[35m"

    COMPONENT = "" if _NO_COLOR else "\033[34m"


# =============================================================================
# Formatters
# =============================================================================


class JSONLFormatter(logging.Formatter):
    """
    Formats log records as JSON Lines.

    Each entry holds timestamp, level, component and message, plus the
    structured ``context`` passed through :func:`log_with_context` and, for
    warnings and above, the source location.

    Example output:
    {"timestamp":"2024-01-15T10:30:45.123000Z","level":"INFO","component":"API","message":"<< GET /data/books"}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "component": getattr(record, "component", "docstore"),
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if context:
            entry["context"] = context

        if record.levelno >= logging.WARNING:
            entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    LEVEL_COLORS = {
        logging.DEBUG: Colors.DEBUG,
        logging.WARNING: Colors.WARNING,
        logging.ERROR: Colors.ERROR,
        logging.CRITICAL: Colors.CRITICAL,
    }

    def format(self, record: logging.LogRecord) -> str:
        component = getattr(record, "component", "docstore")
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        if _NO_COLOR:
            prefix = f"[{timestamp}] [{component}]"
        else:
            prefix = (
                f"{Colors.DIM}{timestamp}{Colors.RESET} "
                f"{Colors.COMPONENT}[{component}]{Colors.RESET}"
            )

        if record.levelno != logging.INFO:
            level_name = record.levelname
            if not _NO_COLOR:
                level_name = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level_name}{Colors.RESET}"
            prefix = f"{prefix} {level_name}:"

        message = f"{prefix} {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


# =============================================================================
# Logger Setup
# =============================================================================


_loggers: dict[str, logging.Logger] = {}
_log_dir: Path | None = None


def setup_logging(
    log_dir: Path | str | None = ".docstore/logs",
    level: int | str = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> Path | None:
    """
    Initialize console and file logging for the ``docstore`` logger tree.

    Args:
        log_dir: Directory for the JSONL log file, or None for console only
        level: Minimum log level (number or name)
        max_bytes: Max size per log file before rotation
        backup_count: Number of rotated files to keep

    Returns:
        The log directory, if file logging is enabled
    """
    global _log_dir

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root_logger = logging.getLogger("docstore")
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ConsoleFormatter())
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    if log_dir is None:
        _log_dir = None
        return None

    _log_dir = Path(log_dir)
    _log_dir.mkdir(parents=True, exist_ok=True)
    log_file = _log_dir / "docstore.log"

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(JSONLFormatter())
    file_handler.setLevel(level)
    root_logger.addHandler(file_handler)

    log_with_context(
        get_logger("API"),
        logging.INFO,
        "Logging initialized",
        {"log_format": "jsonl", "log_file": str(log_file)},
    )
    return _log_dir


class _ComponentFilter(logging.Filter):
    def __init__(self, component: str):
        super().__init__()
        self.component = component

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "component"):
            record.component = self.component
        return True


def get_logger(component: str) -> logging.Logger:
    """
    Get a logger for a component.

    Args:
        component: Component tag (e.g. "API", "Store", "Rules")

    Returns:
        Logger under the ``docstore`` tree tagging records with the component
    """
    if component in _loggers:
        return _loggers[component]

    logger = logging.getLogger(f"docstore.{component.lower().replace(' ', '_')}")
    logger.addFilter(_ComponentFilter(component))
    _loggers[component] = logger
    return logger


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    **kwargs: Any,
) -> None:
    """
    Log a message with structured context data.

    The context ends up as the ``context`` object in the JSONL file.
    """
    extra = {"context": {**(context or {}), **kwargs}} if (context or kwargs) else {}
    logger.log(level, message, extra=extra)


def get_log_dir() -> Path | None:
    """Get the current log directory."""
    return _log_dir
