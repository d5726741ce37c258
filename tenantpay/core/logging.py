"""Structured logging for the payment gateway layer.

Records are rendered as one JSON document per line, tagged with a
correlation id and the active trace/span ids. Provider secret shapes are
masked in messages and tracebacks before anything reaches a handler.
"""

import json
import logging
import re
import sys
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

from tenantpay.core.tracing import get_span_id, get_trace_id

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Razorpay, Stripe and Cashfree key prefixes
SECRET_PATTERNS = [
    re.compile(r"\b(sk|rk|pk)_(live|test)_[A-Za-z0-9]{8,}"),
    re.compile(r"\brzp_(live|test)_[A-Za-z0-9]{8,}"),
    re.compile(r"\bwhsec_[A-Za-z0-9]{8,}"),
    re.compile(r"\bcfsk_[A-Za-z0-9_]{8,}"),
]

REDACTED = "[REDACTED]"

_STANDARD_RECORD_FIELDS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "asctime", "correlation_id", "taskName"}


def get_correlation_id() -> str:
    """Return the correlation id for the current context.

    Falls back to the active trace id, then to a fresh uuid which is kept
    for the rest of the context.
    """
    cid = correlation_id_var.get()
    if cid is not None:
        return cid
    trace_id = get_trace_id()
    if trace_id:
        return trace_id
    cid = uuid.uuid4().hex
    correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


def redact_secrets(text: str) -> str:
    """Replace every known provider secret shape in ``text``."""
    for pattern in SECRET_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return text


class StructuredFormatter(logging.Formatter):
    """Render log records as JSON.

    Keys: timestamp, level, logger, message, correlation_id, trace_id and
    span_id when a span is active, source, exception (type, message and
    stack trace) and extra for fields passed through ``extra=``.
    """

    def __init__(self, include_stack_trace: bool = True, include_extra_fields: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        document: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_secrets(record.getMessage()),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
        }
        document.update(self._trace_fields())
        document["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }
        if record.exc_info and self.include_stack_trace:
            document["exception"] = self._exception_fields(record.exc_info)
        if self.include_extra_fields:
            extra = self._extra_fields(record)
            if extra:
                document["extra"] = extra
        return json.dumps(document, default=str)

    @staticmethod
    def _trace_fields() -> dict[str, str]:
        fields = {}
        trace_id = get_trace_id()
        if trace_id:
            fields["trace_id"] = trace_id
            fields["span_id"] = get_span_id()
        return fields

    @staticmethod
    def _exception_fields(exc_info) -> dict[str, Any]:
        exc_type, exc_value, exc_tb = exc_info
        fields: dict[str, Any] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": redact_secrets(str(exc_value)) if exc_value else None,
        }
        if exc_tb is not None:
            fields["stack_trace"] = [
                redact_secrets(line) for line in traceback.format_exception(exc_type, exc_value, exc_tb)
            ]
        return fields

    @staticmethod
    def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
        extra = {}
        for key, value in vars(record).items():
            if key in _STANDARD_RECORD_FIELDS:
                continue
            extra[key] = redact_secrets(value) if isinstance(value, str) else value
        return extra


class CorrelationIdFilter(logging.Filter):
    """Stamp each record with the current correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


class SecretRedactionFilter(logging.Filter):
    """Mask provider secrets in the rendered message.

    Provider error messages sometimes echo request parameters back. The
    message is rendered once, masked and stored without args so every
    downstream formatter sees only the masked text.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = redact_secrets(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Replace the root handlers with a single stdout handler.

    Args:
        level: Log level name
        json_format: Emit JSON documents instead of plain text lines
        include_stack_trace: Include tracebacks in JSON documents
    """
    numeric_level = logging.getLevelName(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(CorrelationIdFilter())
    handler.addFilter(SecretRedactionFilter())
    if json_format:
        handler.setFormatter(StructuredFormatter(include_stack_trace=include_stack_trace))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
