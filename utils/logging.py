"""
Logging Utility - Structured JSON Logging

Provides centralized, structured logging configuration for all backend components.
Supports JSON format for production and human-readable format for development.

Usage:
    from utils.logging import log_event, setup_logging, start_timer

    setup_logging(level="INFO", format_type="json")

    timer = start_timer()
    log_event(logger, "appstore.token.extracted", "success", ctx=ctx, latency=timer(), country="us")
"""

import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import orjson

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else arrived through `extra`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON documents, extra fields included."""

    def format(self, record: logging.LogRecord) -> str:
        document: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                document[key] = value

        if record.exc_info:
            document["exc_info"] = self.formatException(record.exc_info)

        return orjson.dumps(document, default=str).decode("utf-8")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def setup_logging(level: str = "INFO", format_type: str = "json") -> None:
    """Configure application-wide logging on stdout.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Log format ('json' or 'text')
    """
    handler = logging.StreamHandler(sys.stdout)
    if format_type.lower() == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def start_timer() -> Callable[[], float]:
    """Start a monotonic timer; the returned callable yields elapsed seconds."""
    start = time.monotonic()

    def elapsed() -> float:
        return time.monotonic() - start

    return elapsed


def log_event(
    logger: logging.Logger,
    event: str,
    status: str,
    ctx: Optional[Any] = None,
    latency: Optional[float] = None,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    """
    Emit a named status event.

    Args:
        logger: Logger to emit on
        event: Dotted event name, e.g. "appstore.reviews.request"
        status: Outcome label, e.g. "success", "failed", "retrying"
        ctx: Optional correlation context exposing log_fields()
        latency: Optional elapsed seconds, rendered as latency_ms
        level: Log level for the record
        **fields: Additional structured fields
    """
    extra: dict[str, Any] = {"event": event, "status": status}
    if ctx is not None:
        extra.update(ctx.log_fields())
    if latency is not None:
        extra["latency_ms"] = int(latency * 1000)
    extra.update(fields)

    logger.log(level, "%s %s", event, status, extra=extra)
