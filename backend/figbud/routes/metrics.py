"""
Prometheus metrics endpoint.

GET /metrics
Returns Prometheus-formatted metrics for scraping.
"""
from fastapi import APIRouter, Response
from fastapi.responses import PlainTextResponse

from figbud.core.logging import get_logger
from figbud.core.metrics import get_metrics, get_metrics_content_type, record_provider_timeout
from figbud.services.ai.orchestration import get_ai_orchestrator

logger = get_logger(__name__)
router = APIRouter()


def refresh_provider_gauges() -> None:
    """
    Bring breaker and timeout gauges up to date before a scrape.

    Open circuits only move to half-open when they are next evaluated, so a
    provider nobody has asked for would otherwise report a stale state.
    """
    orchestrator = get_ai_orchestrator()
    orchestrator.breaker.get_metrics()
    for provider in orchestrator.registry.providers:
        record_provider_timeout(provider.id, provider.timeout)


@router.get("", response_class=PlainTextResponse)
async def metrics():
    """Provider, circuit breaker, cache and HTTP metrics. No authentication required."""
    try:
        refresh_provider_gauges()
        return Response(content=get_metrics(), media_type=get_metrics_content_type())
    except Exception as e:
        logger.error(
            "metrics_endpoint_error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return Response(
            content=b"# Error collecting metrics\n",
            media_type=get_metrics_content_type(),
        )
