"""
Health check endpoints.
"""
from fastapi import APIRouter

from figbud.core.logging import get_logger
from figbud.services.ai.orchestration import get_ai_orchestrator

logger = get_logger(__name__)
router = APIRouter()


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    """
    return {
        "status": "ok",
        "message": "API is running"
    }


@router.get("/providers")
async def providers_health():
    """
    Health of the AI provider layer.

    Returns:
        - status: ok if at least one provider circuit is not open, else degraded
        - strategy: active selection strategy
        - providers: catalog entries with current adaptive timeouts
        - circuit_breakers: per-provider breaker state
        - performance: per-provider latency and success statistics
        - cache: response cache statistics
    """
    stats = get_ai_orchestrator().get_statistics()
    breakers = stats["circuit_breakers"]
    open_count = sum(1 for b in breakers.values() if b["state"] == "open")
    all_open = bool(stats["providers"]) and open_count == len(stats["providers"])

    if all_open:
        logger.warning("health_all_provider_circuits_open", providers=open_count)

    return {
        "status": "degraded" if all_open else "ok",
        **stats,
    }
