"""Structured logging for easyproject-mcp.

stdout carries the JSON-RPC stream, so logs go to stderr by default or to a
rotating file (5MB, 3 backups) when ``logging.target`` names a path.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from logging.handlers import RotatingFileHandler
from typing import Any

from easyproject_mcp.config import LogFormat, LoggingConfig

LOGGER_NAME = "easyproject_mcp"
_setup_lock = threading.Lock()
_MAX_BYTES = 5 * 1024 * 1024  # 5MB
_BACKUP_COUNT = 3
_PRETTY_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class _JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if hasattr(record, "tool"):
            entry["tool"] = record.tool
        if hasattr(record, "args_data"):
            entry["args"] = record.args_data
        if hasattr(record, "duration_ms"):
            entry["duration_ms"] = record.duration_ms
        if hasattr(record, "error"):
            entry["error"] = record.error
        if hasattr(record, "rpc_method"):
            entry["method"] = record.rpc_method
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


class _ManagedHandler:
    """Marker mixin for handlers installed by :func:`setup_logging`."""

    target: str


class _ManagedStreamHandler(_ManagedHandler, logging.StreamHandler):  # type: ignore[type-arg]
    pass


class _ManagedFileHandler(_ManagedHandler, RotatingFileHandler):
    pass


def _make_formatter(fmt: LogFormat) -> logging.Formatter:
    if fmt is LogFormat.JSON:
        return _JsonFormatter()
    return logging.Formatter(_PRETTY_FORMAT)


def setup_logging(config: LoggingConfig) -> logging.Logger:
    """Attach one handler for *config* to the package logger.

    Calling again with the same target only updates level and format; a
    different target replaces the previous handler.
    """
    logger = logging.getLogger(LOGGER_NAME)
    target = "stderr" if config.target == "stderr" else os.path.abspath(config.target)

    with _setup_lock:
        existing: logging.Handler | None = None
        for h in logger.handlers[:]:
            if not isinstance(h, _ManagedHandler):
                continue
            if h.target == target and existing is None:
                existing = h
                continue
            # Different target: remove the stale handler to avoid duplicates.
            logger.removeHandler(h)
            h.close()

        if existing is None:
            handler: logging.Handler
            if target == "stderr":
                handler = _ManagedStreamHandler(sys.stderr)
            else:
                handler = _ManagedFileHandler(target, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT)
            handler.target = target  # type: ignore[attr-defined]
            logger.addHandler(handler)
            existing = handler

        existing.setFormatter(_make_formatter(config.format))
        logger.setLevel(config.level.upper())
        logger.propagate = False
    return logger
