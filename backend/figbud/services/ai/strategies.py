"""
Provider selection strategies.

Every strategy receives the already-filtered candidate list (credential
present, breaker not open) in ascending priority and either returns the
first successful AIResponse, with the attempt log attached, or raises
AllProvidersExhausted carrying the last error and the same log.

- CascadeStrategy: one provider at a time in priority order.
- ParallelStrategy: all candidates at once; first success wins and the
  rest are cancelled. An early failure never fails the query.
- RaceStrategy: candidates ranked by observed performance, started
  ``rank * stagger`` seconds apart; if the race produces no success, one
  sequential pass over every original candidate.

Each attempt updates the circuit breaker, the performance tracker and
provider metrics. Cancelled attempts are logged but never counted as
provider failures.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from figbud.core.cancellation import CancellationToken, RequestCancelled
from figbud.core.circuit_breaker import CircuitBreaker
from figbud.core.config import AISettings
from figbud.core.logging import get_logger
from figbud.core.metrics import (
    record_provider_cancelled,
    record_provider_failure,
    record_provider_success,
)
from figbud.core.tracing import mark_error, start_span
from figbud.services.ai.llm_client import QueryExecutor
from figbud.services.ai.performance import PerformanceTracker
from figbud.services.ai.providers import ProviderCandidate
from figbud.services.ai.schema import (
    AIQuery,
    AIResponse,
    AllProvidersExhausted,
    AttemptRecord,
    ProviderError,
)

logger = get_logger(__name__)


@dataclass
class AttemptOutcome:
    candidate: ProviderCandidate
    response: Optional[AIResponse] = None
    error: Optional[BaseException] = None
    latency_ms: Optional[float] = None
    cancelled: bool = False
    superseded: bool = False

    @property
    def succeeded(self) -> bool:
        return self.response is not None

    def to_record(self) -> AttemptRecord:
        if self.superseded:
            error = "superseded"
        elif self.cancelled:
            error = "cancelled"
        elif self.error is not None:
            error = str(self.error)
        else:
            error = None
        return AttemptRecord(
            provider_name=self.candidate.provider.name,
            success=self.succeeded,
            error=error,
            latency_ms=round(self.latency_ms, 2) if self.latency_ms is not None else None,
        )


class Strategy:
    """Base class: runs single attempts and bookkeeps their outcome."""

    name = "base"

    def __init__(
        self,
        executor: QueryExecutor,
        breaker: CircuitBreaker,
        tracker: PerformanceTracker,
    ):
        self.executor = executor
        self.breaker = breaker
        self.tracker = tracker

    async def run(self, candidates: Sequence[ProviderCandidate], query: AIQuery) -> AIResponse:
        raise NotImplementedError

    async def _attempt(
        self,
        candidate: ProviderCandidate,
        query: AIQuery,
        token: Optional[CancellationToken] = None,
    ) -> AttemptOutcome:
        """Run one attempt. Never raises for provider faults or cancellation."""
        provider = candidate.provider
        with start_span("ai.provider_attempt", {
            "ai.provider": provider.id,
            "ai.model": provider.model,
            "ai.strategy": self.name,
            "ai.timeout_seconds": provider.timeout,
        }) as span:
            start = time.perf_counter()
            try:
                response = await self.executor.execute(candidate, query, token)
            except RequestCancelled as exc:
                latency_ms = (time.perf_counter() - start) * 1000.0
                record_provider_cancelled(provider.id)
                span.set_attribute("ai.outcome", "cancelled")
                logger.debug(
                    "ai_provider_cancelled",
                    provider=provider.id,
                    reason=exc.reason,
                    latency_ms=latency_ms,
                )
                return AttemptOutcome(candidate, error=exc, latency_ms=latency_ms, cancelled=True)
            except ProviderError as exc:
                latency_ms = (time.perf_counter() - start) * 1000.0
                self._record_failure(candidate, exc.error_type, latency_ms)
                mark_error(span, exc)
                logger.warning(
                    "ai_provider_failed",
                    provider=provider.id,
                    strategy=self.name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    latency_ms=latency_ms,
                )
                return AttemptOutcome(candidate, error=exc, latency_ms=latency_ms)
            except Exception as exc:
                latency_ms = (time.perf_counter() - start) * 1000.0
                self._record_failure(candidate, "unexpected_error", latency_ms)
                mark_error(span, exc)
                logger.error(
                    "ai_provider_unexpected_error",
                    provider=provider.id,
                    strategy=self.name,
                    error=str(exc),
                    error_type=type(exc).__name__,
                    exc_info=True,
                )
                return AttemptOutcome(candidate, error=exc, latency_ms=latency_ms)

            latency_ms = (time.perf_counter() - start) * 1000.0
            self.breaker.record_success(provider.id)
            self.tracker.record_success(provider, latency_ms / 1000.0)
            record_provider_success(provider.id, latency_ms / 1000.0)
            span.set_attribute("ai.outcome", "success")
            logger.info(
                "ai_provider_succeeded",
                provider=provider.id,
                strategy=self.name,
                latency_ms=latency_ms,
            )
            return AttemptOutcome(candidate, response=response, latency_ms=latency_ms)

    def _record_failure(self, candidate: ProviderCandidate, error_type: str, latency_ms: float) -> None:
        provider = candidate.provider
        self.breaker.record_failure(provider.id)
        self.tracker.record_failure(provider)
        record_provider_failure(provider.id, error_type, latency_ms / 1000.0)

    async def _sequential(
        self, candidates: Sequence[ProviderCandidate], query: AIQuery
    ) -> Tuple[Optional[AttemptOutcome], List[AttemptOutcome]]:
        outcomes: List[AttemptOutcome] = []
        for candidate in candidates:
            outcome = await self._attempt(candidate, query, CancellationToken())
            outcomes.append(outcome)
            if outcome.succeeded:
                return outcome, outcomes
        return None, outcomes

    async def _delayed_attempt(
        self,
        candidate: ProviderCandidate,
        delay: float,
        query: AIQuery,
        token: CancellationToken,
    ) -> Optional[AttemptOutcome]:
        """Attempt after ``delay`` seconds; None if cancelled before starting."""
        if delay > 0 and await token.sleep(delay):
            logger.debug("ai_provider_start_skipped", provider=candidate.provider.id)
            return None
        if token.cancelled:
            return None
        return await self._attempt(candidate, query, token)

    async def _concurrent(
        self,
        schedule: Sequence[Tuple[ProviderCandidate, float]],
        query: AIQuery,
    ) -> Tuple[Optional[AttemptOutcome], List[AttemptOutcome]]:
        """
        Run scheduled attempts concurrently until the first success.

        Losing attempts are cancelled through their tokens before this
        returns, then drained so their outcomes land in the log.
        """
        tokens = [CancellationToken() for _ in schedule]
        tasks: Dict["asyncio.Task[Optional[AttemptOutcome]]", int] = {}
        for index, (candidate, delay) in enumerate(schedule):
            task = asyncio.create_task(
                self._delayed_attempt(candidate, delay, query, tokens[index])
            )
            tasks[task] = index

        pending = set(tasks)
        outcomes: List[AttemptOutcome] = []
        winner: Optional[AttemptOutcome] = None
        try:
            while pending and winner is None:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=tasks.__getitem__):
                    outcome = task.result()
                    if outcome is None:
                        continue
                    outcomes.append(outcome)
                    if winner is None and outcome.succeeded:
                        winner = outcome

            if pending:
                for token in tokens:
                    token.cancel("superseded")
                for outcome in await asyncio.gather(*pending):
                    if outcome is None:
                        continue
                    if outcome.succeeded:
                        # Completed after the winner was chosen; only one success is logged.
                        outcome = AttemptOutcome(
                            outcome.candidate,
                            latency_ms=outcome.latency_ms,
                            cancelled=True,
                            superseded=True,
                        )
                    outcomes.append(outcome)
                pending = set()
        finally:
            if pending:
                for token in tokens:
                    token.cancel("query_cancelled")
                for task in pending:
                    task.cancel()
        return winner, outcomes

    def _finish(
        self, winner: Optional[AttemptOutcome], outcomes: List[AttemptOutcome]
    ) -> AIResponse:
        records = [outcome.to_record() for outcome in outcomes]
        if winner is None:
            failures = [o for o in outcomes if o.error is not None and not o.cancelled]
            last_error = failures[-1].error if failures else None
            logger.error(
                "ai_providers_exhausted",
                strategy=self.name,
                attempts=len(records),
                last_error=str(last_error) if last_error else None,
            )
            raise AllProvidersExhausted(last_error=last_error, attempts=records)

        response = winner.response
        response.metadata.attempts = records
        response.metadata.strategy = self.name
        return response


class CascadeStrategy(Strategy):
    name = "cascade"

    async def run(self, candidates: Sequence[ProviderCandidate], query: AIQuery) -> AIResponse:
        ordered = sorted(candidates, key=lambda c: c.provider.priority)
        winner, outcomes = await self._sequential(ordered, query)
        return self._finish(winner, outcomes)


class ParallelStrategy(Strategy):
    name = "parallel"

    async def run(self, candidates: Sequence[ProviderCandidate], query: AIQuery) -> AIResponse:
        ordered = sorted(candidates, key=lambda c: c.provider.priority)
        winner, outcomes = await self._concurrent([(c, 0.0) for c in ordered], query)
        return self._finish(winner, outcomes)


class RaceStrategy(Strategy):
    """
    Staggered race over performance-ranked providers.

    Args:
        stagger_seconds: Start delay per rank (rank 0 starts immediately)
        width: Race only the top N ranked providers (None = all)
    """

    name = "race"

    def __init__(
        self,
        executor: QueryExecutor,
        breaker: CircuitBreaker,
        tracker: PerformanceTracker,
        stagger_seconds: float = 0.2,
        width: Optional[int] = None,
    ):
        super().__init__(executor, breaker, tracker)
        self.stagger_seconds = stagger_seconds
        self.width = width

    async def run(self, candidates: Sequence[ProviderCandidate], query: AIQuery) -> AIResponse:
        ranked = self.tracker.rank(candidates)
        if self.width is not None:
            ranked = ranked[: self.width]
        logger.debug(
            "ai_race_ranked",
            order=[c.provider.id for c in ranked],
            stagger_seconds=self.stagger_seconds,
        )
        schedule = [(c, rank * self.stagger_seconds) for rank, c in enumerate(ranked)]
        winner, outcomes = await self._concurrent(schedule, query)
        if winner is not None:
            return self._finish(winner, outcomes)

        logger.warning("ai_race_failed_sequential_fallback", candidates=len(candidates))
        ordered = sorted(candidates, key=lambda c: c.provider.priority)
        winner, fallback_outcomes = await self._sequential(ordered, query)
        return self._finish(winner, outcomes + fallback_outcomes)


def build_strategy(
    name: str,
    executor: QueryExecutor,
    breaker: CircuitBreaker,
    tracker: PerformanceTracker,
    settings: Optional[AISettings] = None,
) -> Strategy:
    """Instantiate a strategy by name (cascade | parallel | race)."""
    settings = settings or AISettings()
    if name == "cascade":
        return CascadeStrategy(executor, breaker, tracker)
    if name == "parallel":
        return ParallelStrategy(executor, breaker, tracker)
    if name == "race":
        return RaceStrategy(
            executor,
            breaker,
            tracker,
            stagger_seconds=settings.race_stagger_seconds,
            width=settings.race_width,
        )
    raise ValueError(f"Unknown strategy: {name}")
