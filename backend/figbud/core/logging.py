"""
Structured logging configuration.

JSON logs via structlog with correlation identifiers carried in context
variables, so every line emitted while serving a chat request (including the
per-provider attempts fanned out by the orchestration strategies) can be
joined back together.

All logs include:
- timestamp (ISO 8601 format)
- level
- service
- trace_id (HTTP request correlation, when present)
- request_id (unique per HTTP request, when present)
- query_id (unique per orchestrated AI query, when present)
"""
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

import structlog
from structlog.types import Processor

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
query_id_var: ContextVar[Optional[str]] = ContextVar("query_id", default=None)

# Order here is the order fields appear in rendered console output
_CORRELATION_FIELDS = (
    ("trace_id", trace_id_var),
    ("request_id", request_id_var),
    ("query_id", query_id_var),
)

SERVICE_NAME = "figbud_ai_api"


def add_trace_context(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor: copy correlation ids and the service name into the entry."""
    for field, var in _CORRELATION_FIELDS:
        value = var.get()
        if value:
            event_dict[field] = value

    event_dict["service"] = SERVICE_NAME
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True
) -> None:
    """
    Configure structlog on top of the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        service_name: Overrides SERVICE_NAME in every entry
        json_output: JSON lines when True, coloured console output otherwise
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_trace_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
    # httpx logs every upstream call at INFO; provider attempts are logged by us
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger (typically ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


@contextmanager
def request_scope(trace_id: str, request_id: str) -> Iterator[None]:
    """Bind HTTP correlation ids for the duration of one request."""
    trace_token = trace_id_var.set(trace_id)
    request_token = request_id_var.set(request_id)
    try:
        yield
    finally:
        request_id_var.reset(request_token)
        trace_id_var.reset(trace_token)


@contextmanager
def query_scope(query_id: Optional[str] = None) -> Iterator[str]:
    """
    Bind an orchestration query id and yield it.

    Tasks spawned by the parallel and race strategies copy the context at
    creation, so attempts inherit the id of the query that launched them.
    """
    query_id = query_id or generate_query_id()
    token = query_id_var.set(query_id)
    try:
        yield query_id
    finally:
        query_id_var.reset(token)


def set_trace_id(trace_id: Optional[str]) -> None:
    trace_id_var.set(trace_id)


def get_trace_id() -> Optional[str]:
    return trace_id_var.get()


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_query_id(query_id: Optional[str]) -> None:
    query_id_var.set(query_id)


def get_query_id() -> Optional[str]:
    return query_id_var.get()


def generate_request_id() -> str:
    return str(uuid.uuid4())


generate_trace_id = generate_request_id


def generate_query_id() -> str:
    """Short id for AI queries; only needs to be unique within a log window."""
    return uuid.uuid4().hex[:12]
