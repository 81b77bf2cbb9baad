"""Structured JSON logging for the resilience layer."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

_EXTRA_KEYS = (
    "correlation_id",
    "operation",
    "dependency_key",
    "subject_id",
    "context",
)


class _JSONFormatter(logging.Formatter):
    """Emit JSON log lines with correlation_id support."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                payload[key] = val
        if record.exc_info and record.exc_info[1]:
            payload["exception"] = str(record.exc_info[1])
        return json.dumps(payload, default=str)


_CONFIGURED: set[str] = set()


def get_logger(name: str) -> logging.Logger:
    """Return a JSON-structured logger for *name*."""
    logger = logging.getLogger(name)
    if name not in _CONFIGURED:
        logger.setLevel(logging.DEBUG)
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(_JSONFormatter())
        logger.addHandler(handler)
        logger.propagate = False
        _CONFIGURED.add(name)
    return logger


def set_log_level(level: str) -> None:
    """Apply *level* to every logger created through :func:`get_logger`."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    for name in _CONFIGURED:
        logging.getLogger(name).setLevel(numeric)
