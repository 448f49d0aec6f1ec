"""
AI orchestration entry point.

process_query() is the single call host code makes:

1. Derive the cache key; a hit returns immediately (no provider is called).
2. Filter the registry by credential availability, breaker state and
   rate-limit windows.
3. Run the configured strategy (cascade, parallel or race).
4. Cache and return the winning AIResponse, or surface
   AllProvidersExhausted with the attempt log.

Breaker, rate-limit, performance and cache state are process-local and
shared by every orchestrator derived via with_credentials().
"""
import time
from typing import Any, Dict, Mapping, Optional

from figbud.core.circuit_breaker import CircuitBreaker
from figbud.core.config import AISettings, get_ai_settings
from figbud.core.logging import get_logger, query_scope
from figbud.core.metrics import record_ai_query
from figbud.core.tracing import mark_error, start_span
from figbud.services.ai.cache import ResponseCache, build_cache_key
from figbud.services.ai.llm_client import QueryExecutor
from figbud.services.ai.performance import PerformanceTracker
from figbud.services.ai.providers import ProviderRegistry
from figbud.services.ai.rate_limits import RateLimitTracker
from figbud.services.ai.schema import AIQuery, AIResponse, AllProvidersExhausted
from figbud.services.ai.strategies import Strategy, build_strategy

logger = get_logger(__name__)


class AIOrchestrator:
    """
    Coordinates registry, breaker, tracker, cache, executor and strategy.

    All collaborators are injected; get_ai_orchestrator() wires the default
    process-wide instance from environment settings.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        breaker: CircuitBreaker,
        tracker: PerformanceTracker,
        cache: ResponseCache,
        executor: QueryExecutor,
        strategy: Strategy,
        caller_keys: Optional[Mapping[str, Optional[str]]] = None,
        rate_limits: Optional[RateLimitTracker] = None,
    ):
        self.registry = registry
        self.breaker = breaker
        self.tracker = tracker
        self.cache = cache
        self.executor = executor
        self.strategy = strategy
        self._caller_keys: Dict[str, Optional[str]] = dict(caller_keys or {})
        self.rate_limits = rate_limits if rate_limits is not None else RateLimitTracker()

    @classmethod
    def from_settings(
        cls,
        settings: Optional[AISettings] = None,
        registry: Optional[ProviderRegistry] = None,
        executor: Optional[QueryExecutor] = None,
    ) -> "AIOrchestrator":
        settings = settings or AISettings()
        breaker = CircuitBreaker(
            failure_threshold=settings.failure_threshold,
            recovery_timeout_seconds=settings.recovery_timeout_seconds,
            success_threshold=settings.success_threshold,
        )
        tracker = PerformanceTracker(
            timeout_floor_seconds=settings.timeout_floor_seconds,
            min_samples=settings.adaptive_min_samples,
        )
        rate_limits = RateLimitTracker()
        if executor is None:
            executor = QueryExecutor(settings=settings, rate_limits=rate_limits)
        else:
            rate_limits = getattr(executor, "rate_limits", rate_limits)
        return cls(
            registry=registry or ProviderRegistry(),
            breaker=breaker,
            tracker=tracker,
            cache=ResponseCache(
                max_entries=settings.cache_max_entries,
                ttl_seconds=settings.cache_ttl_seconds,
            ),
            executor=executor,
            strategy=build_strategy(settings.strategy, executor, breaker, tracker, settings),
            rate_limits=rate_limits,
        )

    def with_credentials(self, caller_keys: Optional[Mapping[str, Optional[str]]]) -> "AIOrchestrator":
        """Orchestrator for one caller's keys, sharing all state with this one."""
        return AIOrchestrator(
            registry=self.registry,
            breaker=self.breaker,
            tracker=self.tracker,
            cache=self.cache,
            executor=self.executor,
            strategy=self.strategy,
            caller_keys=caller_keys,
            rate_limits=self.rate_limits,
        )

    async def process_query(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        system_prompt: str = "",
    ) -> AIResponse:
        """
        Answer one query through the configured strategy.

        Raises:
            AllProvidersExhausted: no provider was available or all failed
        """
        query = AIQuery(message=message, context=context or {}, system_prompt=system_prompt or "")
        strategy_name = self.strategy.name
        start = time.perf_counter()

        with query_scope() as query_id, start_span("ai.process_query", {
            "ai.query_id": query_id,
            "ai.strategy": strategy_name,
            "ai.message_length": len(message),
        }) as span:

            credentials = self.registry.resolve_credentials(self._caller_keys)
            cache_key = build_cache_key(message, query.context, query.system_prompt, credentials)

            cached = self.cache.get(cache_key)
            if cached is not None:
                duration = time.perf_counter() - start
                span.set_attribute("ai.cache_hit", True)
                record_ai_query(strategy_name, "cache_hit", duration)
                return cached
            span.set_attribute("ai.cache_hit", False)

            candidates = self.registry.available(self.breaker, self._caller_keys, self.rate_limits)
            logger.info(
                "ai_query_started",
                strategy=strategy_name,
                candidates=[c.provider.id for c in candidates],
            )

            try:
                if not candidates:
                    raise AllProvidersExhausted(attempts=[])
                response = await self.strategy.run(candidates, query)
            except AllProvidersExhausted as exc:
                duration = time.perf_counter() - start
                mark_error(span, exc)
                record_ai_query(strategy_name, "exhausted", duration)
                logger.error(
                    "ai_query_failed",
                    strategy=strategy_name,
                    attempts=len(exc.attempts),
                    error=str(exc),
                    duration_ms=duration * 1000.0,
                )
                raise

            duration = time.perf_counter() - start
            response.metadata.response_time_ms = round(duration * 1000.0, 2)
            self.cache.set(cache_key, response)

            span.set_attribute("ai.provider", response.provider)
            record_ai_query(strategy_name, "success", duration)
            logger.info(
                "ai_query_completed",
                strategy=strategy_name,
                provider=response.provider,
                attempts=len(response.metadata.attempts or []),
                duration_ms=duration * 1000.0,
            )
            return response

    def get_statistics(self) -> Dict[str, Any]:
        """Breaker, rate-limit, performance and timeout snapshots plus cache stats."""
        return {
            "strategy": self.strategy.name,
            "providers": [
                {
                    "id": p.id,
                    "name": p.name,
                    "model": p.model,
                    "priority": p.priority,
                    "is_free": p.is_free,
                    "timeout": p.timeout,
                    "base_timeout": p.base_timeout,
                }
                for p in self.registry.providers
            ],
            "circuit_breakers": self.breaker.get_metrics(),
            "rate_limits": self.rate_limits.snapshot(),
            "performance": self.tracker.snapshot(),
            "cache": self.cache.stats(),
        }


_ai_orchestrator: Optional[AIOrchestrator] = None


def get_ai_orchestrator() -> AIOrchestrator:
    """Get the global orchestrator built from environment settings."""
    global _ai_orchestrator
    if _ai_orchestrator is None:
        settings = get_ai_settings()
        _ai_orchestrator = AIOrchestrator.from_settings(settings)
        logger.info("ai_orchestrator_initialized", strategy=settings.strategy)
    return _ai_orchestrator


def reset_ai_orchestrator() -> None:
    """Drop the global orchestrator (tests and configuration reloads)."""
    global _ai_orchestrator
    _ai_orchestrator = None
