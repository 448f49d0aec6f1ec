"""
Request correlation middleware.

Every request gets a trace id (taken from the caller when supplied) and a
fresh request id. Both are bound to the logging context for the lifetime of
the request, echoed as response headers and attached to an ``http.request``
span. HTTP RED metrics are recorded here once per request.
"""
import time
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import generate_request_id, generate_trace_id, get_logger, request_scope
from .metrics import record_http_request
from .tracing import get_trace_id_from_context, mark_error, start_span

logger = get_logger(__name__)

TRACE_HEADER = "X-Trace-ID"
REQUEST_HEADER = "X-Request-ID"


def _format_trace_id(otel_trace_id: str) -> str:
    """32-char hex -> UUID layout, matching generated ids."""
    if len(otel_trace_id) != 32:
        return otel_trace_id
    return (
        f"{otel_trace_id[0:8]}-{otel_trace_id[8:12]}-{otel_trace_id[12:16]}-"
        f"{otel_trace_id[16:20]}-{otel_trace_id[20:32]}"
    )


def resolve_trace_id(request: Request) -> str:
    """X-Trace-ID, then X-Request-ID, then the active OTel span, then a new id."""
    supplied: Optional[str] = request.headers.get(TRACE_HEADER) or request.headers.get(REQUEST_HEADER)
    if supplied:
        return supplied
    otel_trace_id = get_trace_id_from_context()
    return _format_trace_id(otel_trace_id) if otel_trace_id else generate_trace_id()


class TraceIDMiddleware(BaseHTTPMiddleware):
    """Bind correlation ids, time the request and record RED metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = resolve_trace_id(request)
        request_id = generate_request_id()
        path = request.url.path

        with request_scope(trace_id, request_id), start_span(
            "http.request", {"http.method": request.method, "http.route": path}
        ) as span:
            logger.info(
                "request_started",
                method=request.method,
                path=path,
                client_host=request.client.host if request.client else None,
            )
            start_time = time.perf_counter()
            status_code = 500
            try:
                response = await call_next(request)
                status_code = response.status_code
            except Exception as e:
                mark_error(span, e)
                logger.error(
                    "request_failed",
                    method=request.method,
                    path=path,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                raise
            finally:
                duration = time.perf_counter() - start_time
                span.set_attribute("http.status_code", status_code)
                record_http_request(request.method, path, status_code, duration)

            logger.info(
                "request_completed",
                method=request.method,
                path=path,
                status_code=status_code,
                latency_ms=int(duration * 1000),
            )
            response.headers[TRACE_HEADER] = trace_id
            response.headers[REQUEST_HEADER] = request_id
            return response
