"""
Structured logging for the approval engine.

Every logger lives under the ``approval_kernel`` namespace and, once
``configure_logging()`` has run, writes one JSON object per line::

    {"ts": "...", "level": "INFO", "logger": "approval_kernel.services.sla_monitor",
     "message": "sla_breached", "tenant_id": "...", "instance_id": "...",
     "approval_level": "SUPERVISOR"}

Messages are snake_case event names; the data goes in ``extra``.  Request
scoped identifiers (tenant, actor, instance, workflow, correlation id) are
bound once through ``LogContext`` and stamped on every line emitted inside
the binding, across threads and async tasks alike.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, TextIO
from uuid import UUID

ROOT_LOGGER_NAME = "approval_kernel"

CONTEXT_FIELDS = (
    "correlation_id",
    "tenant_id",
    "actor_id",
    "instance_id",
    "workflow_id",
)

_context: ContextVar[Mapping[str, str]] = ContextVar("approval_log_context", default={})


class LogContext:
    """Request-scoped fields added to every log line.

    Values are stored as strings; ``None`` never overwrites a bound field.
    """

    @staticmethod
    def _merged(fields: Mapping[str, Any]) -> dict[str, str]:
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: Any) -> None:
        _context.set(cls._merged(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """Bind fields for the duration of a ``with`` block."""
        token = _context.set(cls._merged(fields))
        try:
            yield
        finally:
            _context.reset(token)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS = frozenset(
    vars(logging.makeLogRecord({}))
) | {"message", "asctime", "taskName"}


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name != "code" and not name.startswith("_"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record.

    Key precedence: the fixed header, then LogContext, then ``extra``.  An
    ``extra`` key that collides with an earlier key is dropped.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    """Logger ``approval_kernel.<name>``, e.g. ``get_logger("services.sla_monitor")``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> bool:
    """Attach a JSON handler to the ``approval_kernel`` logger.

    ``level`` accepts a number or a name such as ``"DEBUG"``.  Only the first
    call configures anything; it returns True, later calls return False.
    """
    global _configured
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level!r}")
        level = resolved

    with _configure_lock:
        if _configured:
            return False
        _configured = True

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.propagate = False
    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)
    return True


def reset_logging() -> None:
    """Undo ``configure_logging()``.  Tests only."""
    global _configured
    with _configure_lock:
        _configured = False
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.WARNING)
    root.propagate = True
