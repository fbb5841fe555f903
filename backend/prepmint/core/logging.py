"""Structured logging for PrepMint."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import orjson

CONTEXT_PREFIX = "ctx_"
_QUIET_LOGGERS = ("urllib3", "httpx", "hpack", "grpc")


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Fields passed as ``extra=log_context(...)`` are lifted to top-level keys,
    so a failed write logs ``{"source": "users", "record_id": ...}`` next to
    the message.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key.startswith(CONTEXT_PREFIX) and value is not None:
                payload.setdefault(key[len(CONTEXT_PREFIX):], value)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = record.stack_info
        return orjson.dumps(payload, default=str).decode("utf-8")


def log_context(**fields: Any) -> dict[str, Any]:
    """``extra=`` mapping for contextual fields; ``None`` values are dropped."""
    return {f"{CONTEXT_PREFIX}{key}": value for key, value in fields.items() if value is not None}


def configure_logging(level: str | int | None = None, use_json: bool | None = None) -> None:
    """Configure the root logger.

    ``PMNT_LOG_LEVEL`` and ``PMNT_LOG_FORMAT`` (``json`` or ``text``) apply
    when the arguments are omitted.
    """
    if level is None:
        level = os.environ.get("PMNT_LOG_LEVEL", "INFO").upper()
    if use_json is None:
        use_json = os.environ.get("PMNT_LOG_FORMAT", "json").lower() != "text"
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]
    # Client libraries under the backends log every request at INFO.
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = "prepmint") -> logging.Logger:
    """Return configured logger, configuring root on first call."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "configure_logging", "get_logger", "log_context", "CONTEXT_PREFIX"]
