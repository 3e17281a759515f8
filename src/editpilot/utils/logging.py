"""Logging bootstrap for the agent service.

Records go to ``editpilot.log`` under the log directory (rotated by size)
and, unless disabled, to stderr. Uvicorn's own loggers are routed through
the root handlers so server and agent lines share one format.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import sys
from pathlib import Path

__all__ = ["LOG_FILE_NAME", "LOG_FORMAT", "get_log_path", "setup_logging"]

LOG_FILE_NAME = "editpilot.log"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_DIR_ENV = "EDITPILOT_LOG_DIR"

_DEFAULT_LOG_DIR = Path.home() / ".editpilot" / "logs"
# Chatty below WARNING: connection pools, SDK retries, per-request access lines.
_QUIETED_LOGGERS = ("asyncio", "httpx", "httpcore", "openai", "uvicorn.access")
_UVICORN_LOGGERS = ("uvicorn", "uvicorn.error")

_active_log_path: Path | None = None


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the service's root handlers and return the log file path.

    A second call is a no-op returning the existing path unless ``force``
    is set, which rebuilds the handlers (e.g. to switch to DEBUG once the
    settings file has been read).
    """

    global _active_log_path
    if _active_log_path is not None and not force:
        return _active_log_path

    directory = Path(log_dir or os.environ.get(LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / LOG_FILE_NAME

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers = [_file_handler(log_path, max_bytes, backup_count)]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _route_server_loggers(level)

    _active_log_path = log_path
    return log_path


def get_log_path() -> Path | None:
    """Return the log file installed by :func:`setup_logging`, if any."""

    return _active_log_path


def _file_handler(path: Path, max_bytes: int, backup_count: int) -> logging.Handler:
    return logging.handlers.RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")


def _route_server_loggers(level: int) -> None:
    floor = max(level, logging.WARNING)
    for name in _QUIETED_LOGGERS:
        logging.getLogger(name).setLevel(floor)
    for name in _UVICORN_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.propagate = True
