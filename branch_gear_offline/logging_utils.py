"""
Structured JSON logging for the offline runtime.

Drain passes tag their log lines with sync context: the pass id, and for
each queued operation its table, operation, record id, queue entry and
attempt number. The JSON formatter lifts those tags to top-level keys, so
one pass, or one queue entry across passes, can be filtered in a log viewer.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, TextIO

if TYPE_CHECKING:
    from .local.queue import QueueItem

# Sync context emitted as top-level JSON keys, in this order
SYNC_FIELDS = ("pass_id", "table", "operation", "record_id", "queue_item", "attempt")

_RECORD_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredJsonFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs one JSON object per line:
    - timestamp: record creation time, ISO 8601 in UTC
    - level, logger, message
    - sync context keys (see ``SYNC_FIELDS``) when the record carries them
    - context: any other extra fields
    - exception: formatted traceback, if any
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in SYNC_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_obj[key] = _jsonable(value)

        context = {
            key: _jsonable(value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in SYNC_FIELDS and not key.startswith("_")
        }
        if context:
            log_obj["context"] = context

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = "branch_gear_offline",
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    Send a logger's output through ``StructuredJsonFormatter``.

    Calling it again replaces the JSON handler instead of adding a second one;
    handlers installed by the application are left alone.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the package logger)
        stream: Output stream (default: stdout)

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        if isinstance(handler.formatter, StructuredJsonFormatter):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


class SyncLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps every line of a drain pass with its context.

    Example:
        >>> log = SyncLoggerAdapter(logger, {"pass_id": "3f9c0a1b2d4e"})
        >>> log.for_item(item).warning("Replay failed")
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def for_item(self, item: QueueItem) -> SyncLoggerAdapter:
        """Adapter for one queued operation within this pass."""
        return SyncLoggerAdapter(
            self.logger,
            {
                **self.extra,
                "table": item.table.value,
                "operation": item.operation.value,
                "record_id": item.record_id,
                "queue_item": item.id,
                "attempt": item.retries + 1,
            },
        )
