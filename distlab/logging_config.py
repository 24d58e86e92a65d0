"""Logging configuration helpers for distlab.

distlab is silent by default: the package logger only carries a
``NullHandler``. Call one of the helpers below to see protocol traffic.

Example usage::

    import distlab

    # Elections, decisions and lease grants on stderr
    distlab.enable_console_logging(level="INFO")

    # Every message send/delivery, rotated at 10 MB
    distlab.enable_file_logging("runs/raft.log", level="DEBUG")

    # One JSON object per line for log shippers
    distlab.enable_json_logging()

    # Or let the environment decide
    distlab.configure_from_env()

Environment variables:
    DISTLAB_LOGGING: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    DISTLAB_LOG_FILE: Path to a log file (enables rotating file logging)
    DISTLAB_LOG_JSON: Set to "1" for JSON output
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Literal

__all__ = [
    "configure_from_env",
    "disable_logging",
    "enable_console_logging",
    "enable_file_logging",
    "enable_json_file_logging",
    "enable_json_logging",
    "set_level",
    "set_module_level",
]

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5

LOGGER_NAME = "distlab"

ENV_LEVEL = "DISTLAB_LOGGING"
ENV_FILE = "DISTLAB_LOG_FILE"
ENV_JSON = "DISTLAB_LOG_JSON"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class JsonFormatter(logging.Formatter):
    """Renders each record as a single JSON object.

    Example output:
        {"timestamp": "2025-03-02T09:14:07.512000+00:00", "level": "INFO",
         "logger": "distlab.components.consensus.raft",
         "message": "[raft] node-2 became leader for term 3"}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra"):
            payload["extra"] = record.extra
        return json.dumps(payload)


def _to_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, level.upper(), logging.INFO)


def _package_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def _attach(handler: logging.Handler, level: str | int, formatter: logging.Formatter) -> None:
    logger = _package_logger()
    logger.setLevel(_to_level(level))
    handler.setLevel(_to_level(level))
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _rotating_handler(path: str | Path, max_bytes: int, backup_count: int) -> RotatingFileHandler:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)


def _drop_handlers() -> None:
    logger = _package_logger()
    for handler in logger.handlers[:]:
        if not isinstance(handler, logging.NullHandler):
            logger.removeHandler(handler)
            handler.close()


def enable_console_logging(
    level: LogLevel | int = "INFO",
    format: str = DEFAULT_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> logging.StreamHandler:
    """Send distlab logs to stderr.

    Args:
        level: Log level name or numeric level.
        format: Record format string.
        date_format: Format for ``%(asctime)s``.

    Returns:
        The attached StreamHandler.
    """
    handler = logging.StreamHandler()
    _attach(handler, level, logging.Formatter(format, date_format))
    return handler


def enable_file_logging(
    path: str | Path,
    level: LogLevel | int = "INFO",
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    format: str = DEFAULT_FORMAT,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> RotatingFileHandler:
    """Write distlab logs to a size-rotated file.

    Long scripted runs at DEBUG level log every message send and delivery,
    so the file is rotated once it reaches ``max_bytes``.

    Args:
        path: Log file path. Missing parent directories are created.
        level: Log level name or numeric level.
        max_bytes: Size at which the file is rotated.
        backup_count: Number of rotated files to keep.
        format: Record format string.
        date_format: Format for ``%(asctime)s``.

    Returns:
        The attached RotatingFileHandler.
    """
    handler = _rotating_handler(path, max_bytes, backup_count)
    _attach(handler, level, logging.Formatter(format, date_format))
    return handler


def enable_json_logging(level: LogLevel | int = "INFO") -> logging.StreamHandler:
    """Send distlab logs to stderr as JSON lines.

    Args:
        level: Log level name or numeric level.

    Returns:
        The attached StreamHandler.
    """
    handler = logging.StreamHandler()
    _attach(handler, level, JsonFormatter())
    return handler


def enable_json_file_logging(
    path: str | Path,
    level: LogLevel | int = "INFO",
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
) -> RotatingFileHandler:
    """Write distlab logs to a size-rotated file as JSON lines.

    Args:
        path: Log file path. Missing parent directories are created.
        level: Log level name or numeric level.
        max_bytes: Size at which the file is rotated.
        backup_count: Number of rotated files to keep.

    Returns:
        The attached RotatingFileHandler.
    """
    handler = _rotating_handler(path, max_bytes, backup_count)
    _attach(handler, level, JsonFormatter())
    return handler


def configure_from_env() -> None:
    """Configure logging from ``DISTLAB_*`` environment variables.

    Does nothing when neither ``DISTLAB_LOGGING`` nor ``DISTLAB_LOG_FILE``
    is set.

    Example::

        $ DISTLAB_LOGGING=DEBUG DISTLAB_LOG_FILE=runs/pbft.log python demo.py
    """
    level = os.environ.get(ENV_LEVEL, "").upper()
    log_file = os.environ.get(ENV_FILE, "")
    if not (level or log_file):
        return

    level = level or "INFO"
    as_json = os.environ.get(ENV_JSON, "") == "1"
    if log_file:
        writer = enable_json_file_logging if as_json else enable_file_logging
        writer(log_file, level=level)
    else:
        writer = enable_json_logging if as_json else enable_console_logging
        writer(level=level)


def set_level(level: LogLevel | int) -> None:
    """Set the level of the ``distlab`` logger."""
    _package_logger().setLevel(_to_level(level))


def set_module_level(module: str, level: LogLevel | int) -> None:
    """Set the level of one distlab submodule.

    Args:
        module: Module path relative to ``distlab``, e.g.
            ``"components.consensus.raft"``.
        level: Log level name or numeric level.

    Example:
        >>> distlab.enable_console_logging(level="INFO")
        >>> distlab.set_module_level("core.engine", "DEBUG")
    """
    logging.getLogger(f"{LOGGER_NAME}.{module}").setLevel(_to_level(level))


def disable_logging() -> None:
    """Remove every distlab handler and silence the logger."""
    _drop_handlers()
    logger = _package_logger()
    logger.addHandler(logging.NullHandler())
    logger.setLevel(logging.CRITICAL + 1)
