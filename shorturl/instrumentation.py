"""Request context, operation instrumentation and log redaction.

Flow Diagram — instrument()
===========================
::
    ┌──────────────────────┐
    │ async with instrument│
    │ ("create", ctx, ...) │
    └──────────┬───────────┘
               ▼
    ┌──────────────────────┐
    │ log start (masked)   │
    └──────────┬───────────┘
               ▼
    ┌──────────────────────┐
    │ run the wrapped body │
    └──────────┬───────────┘
    RAISED?    │
    ┌──────────┴──────────┐
    │ NO                   │ YES
    ▼                      ▼
┌──────────────┐   ┌──────────────────┐
│ status from  │   │ EXHAUSTED/ERROR  │
│ call.status  │   │ log, re-raise    │
└──────┬───────┘   └────────┬─────────┘
       └──────────┬─────────┘
                  ▼
    ┌──────────────────────┐
    │ Histogram.observe     │
    │ Counter[status].inc   │
    └──────────────────────┘

How to Use
===========
**Step 1 — Configure logging once at startup**::
    setup_logging(settings.LOG_LEVEL)

**Step 2 — Wrap a call site**::
    async with instrument("resolve", ctx, short_code=code) as call:
        url = await service.resolve(code)
        if url is None:
            call.status = RequestStatus.NOT_FOUND

Key Behaviours
===============
- Field values pass through mask_sensitive before they are logged.
- Exceptions are logged and re-raised unchanged.
"""

import logging
import re
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import Counter, Histogram

from shorturl.enums import RequestStatus
from shorturl.exceptions import CodeSpaceExhausted

__all__ = [
    "InstrumentedCall",
    "LOG_FORMAT",
    "RequestContext",
    "instrument",
    "mask_sensitive",
    "setup_logging",
]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ROOT_LOGGER_NAME = "shorturl"

logger = logging.getLogger(__name__)

OPERATION_REQUESTS_TOTAL = Counter(
    "shorturl_operation_requests_total",
    "Total instrumented operations",
    ["operation", "status"],
)
OPERATION_DURATION = Histogram(
    "shorturl_operation_duration_seconds",
    "Time taken by instrumented operations",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)


# ============================================================================
# LOGGING
# ============================================================================


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a stream handler to the ``shorturl`` logger once."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level.upper())
    return root


_CARD_PATTERN = re.compile(r"(?<!\d)(\d{6})\d{6,9}(\d{4})(?!\d)")
_PHONE_PATTERN = re.compile(r"(?<!\d)(1[3-9]\d)\d{4}(\d{4})(?!\d)")
_EMAIL_PATTERN = re.compile(r"\b([A-Za-z0-9])[A-Za-z0-9._%+-]+(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")


def mask_sensitive(text: str | None) -> str | None:
    """Redact card numbers, mobile numbers and e-mail local parts.

    Example:
        >>> mask_sensitive("https://x.io/?to=alice@example.com&tel=13812345678")
        'https://x.io/?to=a****@example.com&tel=138****5678'
    """
    if not text:
        return text
    text = _CARD_PATTERN.sub(r"\1****\2", text)
    text = _PHONE_PATTERN.sub(r"\1****\2", text)
    return _EMAIL_PATTERN.sub(r"\1****\2", text)


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


class ContextLoggerAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[{self.extra['request_id']}] {msg}", kwargs


@dataclass
class RequestContext:
    """Per-request identifiers and timing.

    Attributes:
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        client_ip: Client IP address
        user_agent: Client user agent string
        start_time: Request start timestamp
    """

    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: str | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    start_time: float = field(default_factory=time.time)

    @property
    def logger(self) -> logging.LoggerAdapter:
        return ContextLoggerAdapter(
            logging.getLogger(ROOT_LOGGER_NAME),
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
            },
        )

    def duration_ms(self) -> float:
        return (time.time() - self.start_time) * 1000


# ============================================================================
# INSTRUMENTATION
# ============================================================================


@dataclass
class InstrumentedCall:
    operation: str
    status: RequestStatus = RequestStatus.SUCCESS


@asynccontextmanager
async def instrument(
    operation: str, ctx: RequestContext | None = None, **fields: Any
) -> AsyncIterator[InstrumentedCall]:
    log = ctx.logger if ctx is not None else logger
    details = " ".join(f"{key}={mask_sensitive(str(value))}" for key, value in fields.items())
    call = InstrumentedCall(operation)
    start_time = time.perf_counter()

    log.debug(f"{operation} started {details}".rstrip())
    try:
        yield call
    except CodeSpaceExhausted as exc:
        call.status = RequestStatus.EXHAUSTED
        log.warning(f"{operation} failed: {exc}")
        raise
    except Exception as exc:
        call.status = RequestStatus.ERROR
        log.error(f"{operation} failed: {type(exc).__name__}: {exc} {details}".rstrip())
        raise
    finally:
        duration = time.perf_counter() - start_time
        OPERATION_DURATION.labels(operation=operation).observe(duration)
        OPERATION_REQUESTS_TOTAL.labels(operation=operation, status=call.status).inc()

    log.info(f"{operation} {call.status} in {duration * 1000:.1f}ms {details}".rstrip())
