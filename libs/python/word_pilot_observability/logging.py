"""Centralised logging configuration helpers."""

from __future__ import annotations

import json
import logging
import logging.config
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator


_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("word_pilot_log_context", default={})

_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(service)s] %(name)s: %(message)s"


class ContextFilter(logging.Filter):
    """Inject contextual fields captured via :func:`log_context`."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 - inherited docstring
        context = _LOG_CONTEXT.get()
        if context:
            record.log_context = context
            for key, value in context.items():
                if not hasattr(record, key):
                    setattr(record, key, value)
        if getattr(record, "service", None) is None:
            record.service = self.service_name
        return True


class JsonFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    _RESERVED = frozenset(
        {
            "args",
            "asctime",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "log_context",
            "message",
            "module",
            "msecs",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "taskName",
            "thread",
            "threadName",
        }
    )

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - inherited docstring
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in self._RESERVED or key.startswith("_") or value is None:
                continue
            payload[key] = value if self._is_json_safe(value) else repr(value)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=True)

    @staticmethod
    def _is_json_safe(value: Any) -> bool:
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            return False
        return True


def setup_logging(
    service_name: str,
    level: str | int | None = None,
    *,
    json_output: bool | None = None,
) -> None:
    """Configure process-wide logging.

    ``level`` defaults to ``WORD_PILOT_LOG_LEVEL`` (``INFO``). JSON output is
    the default; set ``WORD_PILOT_LOG_FORMAT=text`` for human readable lines
    during local development.
    """

    resolved_level = level or os.getenv("WORD_PILOT_LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.getenv("WORD_PILOT_LOG_FORMAT", "json").lower() != "text"

    formatter: dict[str, Any]
    if json_output:
        formatter = {"()": "word_pilot_observability.logging.JsonFormatter"}
    else:
        formatter = {"format": _TEXT_FORMAT}

    handlers = ["default"]
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": formatter},
            "filters": {
                "context": {
                    "()": "word_pilot_observability.logging.ContextFilter",
                    "service_name": service_name,
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "stream": sys.stdout,
                    "formatter": "default",
                    "filters": ["context"],
                }
            },
            "root": {"level": resolved_level, "handlers": handlers},
            "loggers": {
                "uvicorn": {"handlers": handlers, "level": resolved_level, "propagate": False},
                "uvicorn.access": {"handlers": handlers, "level": resolved_level, "propagate": False},
                "httpx": {"level": "WARNING"},
            },
        }
    )


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Temporarily bind contextual information that should accompany logs."""

    updated = dict(_LOG_CONTEXT.get())
    for key, value in kwargs.items():
        if value is None:
            updated.pop(key, None)
        else:
            updated[key] = value
    token = _LOG_CONTEXT.set(updated)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


def current_log_context() -> Dict[str, Any]:
    return dict(_LOG_CONTEXT.get())
