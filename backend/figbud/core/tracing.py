"""
OpenTelemetry distributed tracing.

Span layout for one chat request::

    http.request                      (TraceIDMiddleware)
      ai.process_query                (AIOrchestrator)
        ai.provider_attempt x N       (one per upstream call, concurrent
                                       under the parallel and race strategies)

Configuration:
- OTEL_SERVICE_NAME: Service name (default: figbud_ai_api)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC endpoint, e.g. http://localhost:4317
- OTEL_TRACES_SAMPLER_ARG: Sampling rate (default: 1.0)
"""
import os
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from figbud.core.logging import get_logger

logger = get_logger(__name__)

_tracer: Optional[Tracer] = None
_tracer_provider: Optional[TracerProvider] = None

__all__ = [
    "configure_tracing",
    "get_tracer",
    "start_span",
    "mark_error",
    "get_trace_id_from_context",
    "set_span_status",
    "record_exception",
    "instrument_fastapi",
    "shutdown_tracing",
    "StatusCode",
]


def configure_tracing(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
    sampling_rate: float = 1.0,
    enable_otlp: bool = False,
) -> None:
    """
    Configure the tracer provider.

    Args:
        service_name: Defaults to OTEL_SERVICE_NAME or figbud_ai_api
        otlp_endpoint: Defaults to OTEL_EXPORTER_OTLP_ENDPOINT
        sampling_rate: 0.0-1.0, OTEL_TRACES_SAMPLER_ARG overrides
        enable_otlp: Attach a batching OTLP exporter when an endpoint is known
    """
    global _tracer, _tracer_provider

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "figbud_ai_api")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    sampling_rate = float(os.getenv("OTEL_TRACES_SAMPLER_ARG", str(sampling_rate)))

    resource = Resource.create({"service.name": service_name, "service.version": "1.0.0"})
    sampler = ParentBased(TraceIdRatioBased(sampling_rate)) if sampling_rate < 1.0 else None
    _tracer_provider = TracerProvider(resource=resource, sampler=sampler)

    otlp_enabled = False
    if enable_otlp and otlp_endpoint:
        try:
            _tracer_provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
            )
            otlp_enabled = True
        except Exception as e:
            logger.warning(
                "tracing_otlp_configuration_failed",
                endpoint=otlp_endpoint,
                error=str(e),
                error_type=type(e).__name__,
            )

    # The global provider can only be set once per process; later calls keep
    # a local provider, which is enough for spans created through get_tracer().
    trace.set_tracer_provider(_tracer_provider)
    _tracer = _tracer_provider.get_tracer("figbud")

    logger.info(
        "tracing_configured",
        service_name=service_name,
        sampling_rate=sampling_rate,
        otlp_enabled=otlp_enabled,
    )


def get_tracer() -> Tracer:
    """Get the tracer, configuring a default provider on first use."""
    if _tracer is None:
        configure_tracing()
    return _tracer


@contextmanager
def start_span(name: str, attributes: Optional[Mapping[str, Any]] = None) -> Iterator[Span]:
    """Start a span as the current span; None-valued attributes are skipped."""
    clean = {k: v for k, v in (attributes or {}).items() if v is not None}
    with get_tracer().start_as_current_span(name, attributes=clean) as span:
        yield span


def mark_error(span: Span, exc: BaseException) -> None:
    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, str(exc)))


def get_trace_id_from_context() -> Optional[str]:
    """Trace ID of the current span as a 32-char hex string, or None."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        return format(span_context.trace_id, "032x")
    return None


def set_span_status(status_code: StatusCode, description: Optional[str] = None) -> None:
    if status_code is not StatusCode.ERROR:
        description = None
    trace.get_current_span().set_status(Status(status_code, description))


def record_exception(exception: BaseException) -> None:
    """Record an exception on the current span and mark it as an error."""
    mark_error(trace.get_current_span(), exception)


def instrument_fastapi(app) -> None:
    """Give every HTTP request a server span, parented on incoming traceparent headers."""
    try:
        FastAPIInstrumentor.instrument_app(app)
    except Exception as e:
        logger.warning(
            "tracing_fastapi_instrumentation_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def shutdown_tracing() -> None:
    """Flush pending spans and shut down the provider."""
    if _tracer_provider is None:
        return
    try:
        _tracer_provider.shutdown()
        logger.info("tracing_shutdown")
    except Exception as e:
        logger.warning("tracing_shutdown_failed", error=str(e), error_type=type(e).__name__)
