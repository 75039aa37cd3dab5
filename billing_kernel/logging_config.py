"""
Structured JSON logging for the billing kernel.

Every kernel logger sits under ``billing_kernel`` and writes one JSON
object per line:

    {"ts": "2026-01-15T09:30:00+00:00", "level": "INFO",
     "logger": "billing_kernel.services.consolidation",
     "message": "invoice_created", "invoice_id": "6f1c...",
     "invoice_number": "INV-202601-0001", "grand_total": "1180.00"}

``message`` is a snake_case event name.  The other keys come from
``extra=`` or from the invoice bound with ``LogContext.bind()``.  Money
and identifiers are written as strings so that 1180.00 keeps its scale.

A line logged with ``exc_info`` carries ``error_type``, ``error`` and
the traceback.  A BillingKernelError adds ``error_code`` and its
structured attributes (``error_manifest_no``, ``error_invoice_number``).
"""

__all__ = [
    "ROOT_LOGGER",
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterator
from uuid import UUID

from billing_kernel.exceptions import BillingKernelError

ROOT_LOGGER = "billing_kernel"

# configure_logging() tags its handler so that it can find it again
_HANDLER_NAME = "billing_kernel.structured"

_invoice_id: ContextVar[str | None] = ContextVar("billing_log_invoice_id", default=None)


class LogContext:
    """
    The invoice the current unit of work acts on.

    Bound by the consolidation workflow once the invoice has an id, so
    every line logged underneath (linkage, allocation) can be traced back
    to it.  Context variables keep threads and tasks apart.
    """

    @staticmethod
    @contextmanager
    def bind(invoice_id: str | None) -> Iterator[None]:
        token = _invoice_id.set(invoice_id)
        try:
            yield
        finally:
            _invoice_id.reset(token)

    @staticmethod
    def get_all() -> dict[str, str]:
        invoice_id = _invoice_id.get()
        return {} if invoice_id is None else {"invoice_id": invoice_id}

    @staticmethod
    def clear() -> None:
        _invoice_id.set(None)


_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _error_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {"error_type": type(exc).__name__, "error": str(exc)}
    if isinstance(exc, BillingKernelError):
        fields["error_code"] = exc.code
        fields["retryable"] = exc.retryable
        for name, value in vars(exc).items():
            if not name.startswith("_"):
                fields[f"error_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; see the module docstring for the keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_error_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_jsonable)


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.sequence")`` -> ``billing_kernel.services.sequence``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def _installed_handler(logger: logging.Logger) -> logging.Handler | None:
    return next((h for h in logger.handlers if h.get_name() == _HANDLER_NAME), None)


_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> logging.Handler:
    """
    Attach the JSON handler to the ``billing_kernel`` logger.

    The first call wins: later calls return the installed handler and
    change nothing, so the engine can call this unconditionally after
    ``billing_config.get_active_config()`` has applied the configured
    level.  ``level`` may be a name (``"DEBUG"``) or a number.

    Handlers attached by anything else (test harnesses, the host
    application) are left alone.
    """
    if isinstance(level, str):
        level = level.upper()
    with _lock:
        root = logging.getLogger(ROOT_LOGGER)
        installed = _installed_handler(root)
        if installed is not None:
            return installed

        h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        h.set_name(_HANDLER_NAME)
        h.setFormatter(StructuredFormatter())
        root.setLevel(level)
        root.propagate = False
        root.addHandler(h)
        return h


def reset_logging() -> None:
    """Detach the handler configure_logging() installed.  For tests."""
    with _lock:
        root = logging.getLogger(ROOT_LOGGER)
        installed = _installed_handler(root)
        if installed is not None:
            root.removeHandler(installed)
        root.setLevel(logging.NOTSET)
        root.propagate = True
