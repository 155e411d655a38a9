"""Driver logging under the ``clickspec`` namespace.

Every command execution and handshake runs inside a correlation context, so all
records it emits (request, response status, server error) share one correlation
ID. Callers that already track a request ID can enter :func:`correlation_context`
themselves and the driver reuses it. Request-specific data (database, session id,
SQL, error code) travels in ``extra_fields`` and is merged into JSON output by
:class:`StructuredFormatter`.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator
    from logging import LogRecord

__all__ = (
    "CorrelationIDFilter",
    "StructuredFormatter",
    "configure_logging",
    "correlation_context",
    "get_correlation_id",
    "get_logger",
)

ROOT_LOGGER_NAME = "clickspec"
SIMPLE_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"

_correlation_id: ContextVar[str | None] = ContextVar("clickspec_correlation_id", default=None)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Iterator[str]:
    """Tag log records emitted inside the block with one correlation ID.

    Args:
        correlation_id: ID to use. Defaults to the enclosing context's ID, or a new
            random one when there is none.

    Yields:
        The active correlation ID.
    """
    active = correlation_id or _correlation_id.get() or uuid.uuid4().hex
    token = _correlation_id.set(active)
    try:
        yield active
    finally:
        _correlation_id.reset(token)


class CorrelationIDFilter(logging.Filter):
    """Stamp ``correlation_id`` on each record; ``-`` outside a context."""

    def filter(self, record: LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"  # type: ignore[attr-defined]
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, including ``extra_fields`` and the correlation ID."""

    def format(self, record: LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        correlation_id = getattr(record, "correlation_id", None) or get_correlation_id()
        if correlation_id and correlation_id != "-":
            entry["correlation_id"] = correlation_id
        entry.update(getattr(record, "extra_fields", None) or {})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def get_logger(name: str | None = None) -> logging.Logger:
    """Return ``clickspec`` or one of its children, with the correlation filter attached.

    Args:
        name: Dotted name below ``clickspec``; a name already under it is kept as-is.
    """
    if name is None:
        return logging.getLogger(ROOT_LOGGER_NAME)
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    logger = logging.getLogger(name)
    if not any(isinstance(f, CorrelationIDFilter) for f in logger.filters):
        logger.addFilter(CorrelationIDFilter())
    return logger


def configure_logging(
    level: int | str = logging.INFO,
    structured: bool = True,
    handlers: list[logging.Handler] | None = None,
) -> logging.Logger:
    """Route driver logs to stderr (or ``handlers``) and stop propagation to the root logger.

    Args:
        level: Level for the ``clickspec`` logger.
        structured: Emit JSON lines; otherwise a text format including the correlation ID.
        handlers: Replace the default stderr handler.

    Returns:
        The ``clickspec`` logger.
    """
    logger = get_logger()
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    logger.handlers.clear()
    formatter = StructuredFormatter() if structured else logging.Formatter(SIMPLE_FORMAT)
    for handler in handlers or [logging.StreamHandler(sys.stderr)]:
        if handler.formatter is None:
            handler.setFormatter(formatter)
        handler.addFilter(CorrelationIDFilter())
        logger.addHandler(handler)
    logger.propagate = False
    return logger
