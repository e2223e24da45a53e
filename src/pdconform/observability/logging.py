"""Logging setup for pdconform."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from typing import Any


_RESERVED = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "taskName",
}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED and not key.startswith("_")
    }


class _JsonFormatter(logging.Formatter):
    """Emit one JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_extra_fields(record))

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, sort_keys=True, default=str)


class _PrefixFormatter(logging.Formatter):
    """Plain lines: `Error: ...` for problems, `DBG: <logger>: ...` for tracing."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        fields = _extra_fields(record)
        fields.pop("event", None)
        if fields:
            message += " " + " ".join(f"{key}={value}" for key, value in sorted(fields.items()))

        if record.levelno >= logging.WARNING:
            line = f"Error: {message}"
        else:
            line = f"DBG: {record.name}: {message}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Logger:
    """Configure and return the root pdconform logger."""

    logger = logging.getLogger("pdconform")
    logger.setLevel(level.upper())
    formatter: logging.Formatter = _JsonFormatter() if fmt == "json" else _PrefixFormatter()
    if logger.handlers:
        for handler in logger.handlers:
            handler.setFormatter(formatter)
        return logger

    # StreamHandler defaults to stderr; stdout is reserved for decoder output.
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = "pdconform") -> logging.Logger:
    """Return a logger under the pdconform namespace."""

    return logging.getLogger(name)


def log_event(
    logger: logging.Logger,
    event: str,
    *,
    level: int = logging.DEBUG,
    **fields: Any,
) -> None:
    """Emit a structured event log line."""

    logger.log(level, event, extra={"event": event, **fields})
