import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from .core.config import load_environment
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.middleware import TraceIDMiddleware
from .core.tracing import (
    StatusCode,
    configure_tracing,
    get_trace_id_from_context,
    instrument_fastapi,
    record_exception,
    set_span_status,
    shutdown_tracing,
)
from .routes import chat, health, metrics
from .services.ai.orchestration import get_ai_orchestrator
from .services.ai.schema import AllProvidersExhausted

load_environment()

# JSON output in production (containerized), console output in development
log_level = os.getenv("LOG_LEVEL", "INFO")
json_output = os.getenv("LOG_JSON", "true").lower() == "true"
configure_logging(log_level=log_level, json_output=json_output)

logger = get_logger(__name__)

enable_otlp = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "") != ""
configure_tracing(enable_otlp=enable_otlp)

app = FastAPI(
    title="FigBud AI API",
    description="Multi-provider AI orchestration for the FigBud design assistant",
    version="1.0.0"
)

# CORS for local dev and the plugin iframe; restrict in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Must be added after CORS middleware
app.add_middleware(TraceIDMiddleware)

instrument_fastapi(app)


@app.on_event("startup")
async def startup_event():
    """Build the orchestrator so configuration errors surface at startup."""
    logger.info("app_startup_started")
    orchestrator = get_ai_orchestrator()
    credentials = orchestrator.registry.resolve_credentials()
    if not credentials:
        logger.warning(
            "app_startup_no_provider_credentials",
            message="No provider API keys configured. Requests must supply X-*-Key headers.",
        )
    logger.info(
        "app_startup_completed",
        strategy=orchestrator.strategy.name,
        credential_families=sorted(credentials),
    )


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("app_shutdown_started")
    shutdown_tracing()
    logger.info("app_shutdown_completed")


def _error_response(status_code: int, content: dict) -> JSONResponse:
    trace_id = get_trace_id() or get_trace_id_from_context()
    content["trace_id"] = trace_id
    response = JSONResponse(status_code=status_code, content=content)
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


@app.exception_handler(AllProvidersExhausted)
async def providers_exhausted_handler(request: Request, exc: AllProvidersExhausted):
    """Every AI provider failed or none was available."""
    set_span_status(StatusCode.ERROR, str(exc))
    logger.warning(
        "ai_providers_unavailable",
        path=request.url.path,
        attempts=len(exc.attempts),
        last_error=str(exc.last_error) if exc.last_error else None,
    )
    return _error_response(503, {
        "detail": str(exc),
        "status_code": 503,
        "attempts": [a.model_dump(by_alias=True) for a in exc.attempts],
    })


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, exc.detail)

    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    return _error_response(exc.status_code, {
        "detail": exc.detail,
        "status_code": exc.status_code,
    })


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    record_exception(exc)
    set_span_status(StatusCode.ERROR, str(exc))

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    return _error_response(500, {
        "detail": "Internal server error",
        "status_code": 500,
    })


app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(chat.router, prefix="/chat", tags=["Chat"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
