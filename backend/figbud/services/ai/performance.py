"""
Per-provider performance tracking, adaptive timeouts and race ranking.

Statistics are cumulative for the life of the process. A success updates
the incremental latency mean and success count; a failure only touches the
request and success-rate accounting.

Adaptive timeout: once a provider has more than ``min_samples`` successful
observations its timeout becomes 1.5 x average latency, clamped between the
configured floor and the provider's base timeout.

Race ranking: score = success_rate * 1000 - average_latency_ms. The success
rate is blended with a 95% prior weighted as PRIOR_WEIGHT observations, so a
single early failure (or success) does not dominate the order. Providers
without history are scored from the prior with an assumed latency of 60% of
their timeout. When no candidate has history the static priority order is
used unchanged.
"""
import time
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Callable, Dict, List, Optional, Sequence

from figbud.core.logging import get_logger
from figbud.core.metrics import record_provider_timeout
from figbud.services.ai.providers import ProviderCandidate
from figbud.services.ai.schema import ProviderConfig

logger = get_logger(__name__)

PRIOR_SUCCESS_RATE = 0.95
PRIOR_WEIGHT = 3
PRIOR_LATENCY_FRACTION = 0.6
TIMEOUT_LATENCY_FACTOR = 1.5


@dataclass
class PerformanceStat:
    average_latency: float = 0.0  # seconds, over successes only
    success_rate: float = 0.0
    total_requests: int = 0
    success_count: int = 0
    last_success_time: Optional[float] = None


class PerformanceTracker:
    """
    Tracks latency and success rate per provider id.

    Args:
        timeout_floor_seconds: Lower bound for adaptive timeouts
        min_samples: Successes required before timeouts adapt (strictly more)
        clock: Time source used for last_success_time
    """

    def __init__(
        self,
        timeout_floor_seconds: float = 2.0,
        min_samples: int = 5,
        clock: Callable[[], float] = time.time,
    ):
        self.timeout_floor_seconds = timeout_floor_seconds
        self.min_samples = min_samples
        self._clock = clock
        self._stats: Dict[str, PerformanceStat] = {}
        self._lock = Lock()

    def get(self, provider_id: str) -> Optional[PerformanceStat]:
        with self._lock:
            stat = self._stats.get(provider_id)
            return PerformanceStat(**asdict(stat)) if stat else None

    def record_success(self, provider: ProviderConfig, latency_seconds: float) -> None:
        with self._lock:
            stat = self._stats.setdefault(provider.id, PerformanceStat())
            stat.total_requests += 1
            stat.success_count += 1
            stat.average_latency += (latency_seconds - stat.average_latency) / stat.success_count
            stat.success_rate = stat.success_count / stat.total_requests
            stat.last_success_time = self._clock()
            self._adapt_timeout(provider, stat)

    def record_failure(self, provider: ProviderConfig) -> None:
        with self._lock:
            stat = self._stats.setdefault(provider.id, PerformanceStat())
            stat.total_requests += 1
            stat.success_rate = stat.success_count / stat.total_requests

    def _adapt_timeout(self, provider: ProviderConfig, stat: PerformanceStat) -> None:
        if stat.success_count <= self.min_samples:
            return
        target = max(self.timeout_floor_seconds, TIMEOUT_LATENCY_FACTOR * stat.average_latency)
        new_timeout = min(provider.base_timeout, target)
        if abs(new_timeout - provider.timeout) > 1e-9:
            logger.debug(
                "ai_provider_timeout_adapted",
                provider=provider.id,
                previous_timeout=provider.timeout,
                timeout=new_timeout,
                average_latency=stat.average_latency,
            )
            provider.timeout = new_timeout
        record_provider_timeout(provider.id, provider.timeout)

    def score(self, provider: ProviderConfig) -> float:
        """Race score; higher is better."""
        with self._lock:
            stat = self._stats.get(provider.id)
        if stat is None or stat.total_requests == 0:
            return PRIOR_SUCCESS_RATE * 1000 - PRIOR_LATENCY_FRACTION * provider.timeout * 1000

        blended_rate = (
            stat.success_count + PRIOR_SUCCESS_RATE * PRIOR_WEIGHT
        ) / (stat.total_requests + PRIOR_WEIGHT)
        if stat.success_count:
            latency_ms = stat.average_latency * 1000
        else:
            latency_ms = PRIOR_LATENCY_FRACTION * provider.timeout * 1000
        return blended_rate * 1000 - latency_ms

    def rank(self, candidates: Sequence[ProviderCandidate]) -> List[ProviderCandidate]:
        """Order candidates best-first for racing; ties break on priority."""
        with self._lock:
            has_history = any(
                c.provider.id in self._stats and self._stats[c.provider.id].total_requests
                for c in candidates
            )
        if not has_history:
            return sorted(candidates, key=lambda c: c.provider.priority)
        return sorted(
            candidates,
            key=lambda c: (-self.score(c.provider), c.provider.priority),
        )

    def snapshot(self) -> Dict[str, dict]:
        with self._lock:
            return {key: asdict(stat) for key, stat in self._stats.items()}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
