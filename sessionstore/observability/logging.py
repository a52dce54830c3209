"""
Structured Logging: JSON Lines with Session Context

StructuredLogger takes fields as keyword arguments and hands them to the
stdlib logger as `extra`; JsonFormatter writes each record as one JSON
object. Fields set with `logger.context(...)` ride along on every record
emitted inside the block, across awaits, since they live in a ContextVar.

Session payloads and identity data never go into log fields; only
identifiers, error codes and timings do.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Iterator, Optional, TextIO


class LogLevel(IntEnum):
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR

    @classmethod
    def from_name(cls, name: str) -> LogLevel:
        return cls[name.upper()]


_session_fields: ContextVar[dict[str, Any]] = ContextVar("sessionstore_log_fields", default={})

# Attributes every LogRecord has; anything else on a record came in via `extra`
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


class JsonFormatter(logging.Formatter):
    """One JSON object per record: time, level, logger, message, then fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_session_fields.get())
        entry.update(
            (key, value) for key, value in vars(record).items() if key not in _STANDARD_ATTRS
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class StructuredLogger:
    """
    Usage:
        logger = StructuredLogger(__name__)

        with logger.context(session_id=sid):
            logger.info("Session fetched", ttl_remaining_ms=1200)
    """

    __slots__ = ("_logger", "_fields")

    def __init__(self, name: str, **fields: Any) -> None:
        self._logger = logging.getLogger(name)
        self._fields = fields

    @property
    def name(self) -> str:
        return self._logger.name

    def with_extra(self, **fields: Any) -> StructuredLogger:
        return StructuredLogger(self._logger.name, **{**self._fields, **fields})

    def debug(self, message: str, **fields: Any) -> None:
        self._emit(LogLevel.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._emit(LogLevel.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._emit(LogLevel.WARNING, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._emit(LogLevel.ERROR, message, fields)

    def _emit(self, level: LogLevel, message: str, fields: dict[str, Any]) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, message, extra={**self._fields, **fields})

    @staticmethod
    @contextmanager
    def context(**fields: Any) -> Iterator[None]:
        token = _session_fields.set({**_session_fields.get(), **fields})
        try:
            yield
        finally:
            _session_fields.reset(token)


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """Replace root handlers with one stream handler at level."""
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        JsonFormatter()
        if json_output
        else logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger("redis").setLevel(logging.WARNING)
