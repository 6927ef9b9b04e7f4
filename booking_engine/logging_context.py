"""
Request id propagation for log records and domain events.

Each API call runs inside ``request_scope``; every log record emitted while
the scope is open carries ``request_id``, whichever module logged it, and
events recorded by the outbox are stamped with the same id. The filter is
installed on the root handlers by ``configure_logging`` so plain
``logging.getLogger`` loggers are covered as well.

Usage:
    from booking_engine.logging_context import request_scope

    with request_scope("REQ-abc123"):
        coordinator.create_booking(...)   # "... [REQ-abc123] booking_engine...: Booking BK-... created"
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

from booking_engine.utils import generate_ref

LOG_FORMAT = "%(asctime)s [%(request_id)s] %(name)s %(levelname)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
NO_REQUEST = "-"

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """The id of the request being served, or None outside a request."""
    return _request_id.get()


@contextmanager
def request_scope(request_id: Optional[str] = None) -> Iterator[str]:
    """Bind a request id for the duration of the block.

    A fresh ``REQ-`` id is generated when none is given. The previous value
    is restored on exit, also when the block raises.
    """
    request_id = request_id or generate_ref("REQ")
    token = _request_id.set(request_id)
    try:
        yield request_id
    finally:
        _request_id.reset(token)


class RequestIdFilter(logging.Filter):
    """Stamps ``request_id`` on records so formats can use ``%(request_id)s``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = _request_id.get() or NO_REQUEST  # type: ignore[attr-defined]
        return True


def _has_request_filter(filterer: logging.Filterer) -> bool:
    return any(isinstance(f, RequestIdFilter) for f in filterer.filters)


def configure_logging(level: int) -> None:
    """Root logging setup with the request id in every line."""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    for handler in logging.getLogger().handlers:
        if not _has_request_filter(handler):
            handler.addFilter(RequestIdFilter())


def get_request_logger(name: str) -> logging.Logger:
    """Logger whose own records carry ``request_id`` even under foreign handlers."""
    logger = logging.getLogger(name)
    if not _has_request_filter(logger):
        logger.addFilter(RequestIdFilter())
    return logger
