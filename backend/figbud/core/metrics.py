"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: Rate, Errors, Duration for the HTTP surface
- AI Provider Metrics: per-provider attempts, latency, errors, tokens, cost
- Resilience Metrics: circuit breaker state/transitions, adaptive timeouts, rate limits
- Cache Metrics: response cache hits/misses
- Orchestration Metrics: end-to-end query outcomes per strategy

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
- Gauges: No special suffix
"""
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    REGISTRY,
    CONTENT_TYPE_LATEST,
)

from figbud.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry,
)

# ============================================================================
# AI PROVIDER METRICS
# ============================================================================

ai_provider_requests_total = Counter(
    "ai_provider_requests_total",
    "Total number of upstream provider attempts",
    ["provider", "outcome"],  # outcome: success | failure | cancelled
    registry=registry,
)

ai_provider_latency_seconds = Histogram(
    "ai_provider_latency_seconds",
    "Upstream provider attempt latency in seconds",
    ["provider"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 3.0, 5.0, 8.0, 13.0, 30.0],
    registry=registry,
)

ai_provider_errors_total = Counter(
    "ai_provider_errors_total",
    "Total number of failed upstream provider attempts",
    ["provider", "error_type"],
    registry=registry,
)

ai_provider_tokens_total = Counter(
    "ai_provider_tokens_total",
    "Total tokens reported by upstream providers",
    ["provider"],
    registry=registry,
)

ai_provider_cost_usd_total = Counter(
    "ai_provider_cost_usd_total",
    "Estimated upstream spend in USD",
    ["provider"],
    registry=registry,
)

ai_malformed_responses_total = Counter(
    "ai_malformed_responses_total",
    "Replies that were not structured JSON and fell back to text extraction",
    ["provider"],
    registry=registry,
)

# ============================================================================
# RESILIENCE METRICS
# ============================================================================

# 0 = closed, 1 = half-open, 2 = open
circuit_breaker_state = Gauge(
    "ai_circuit_breaker_state",
    "Circuit breaker state per provider (0=closed, 1=half_open, 2=open)",
    ["provider"],
    registry=registry,
)

circuit_breaker_transitions_total = Counter(
    "ai_circuit_breaker_transitions_total",
    "Circuit breaker state transitions",
    ["provider", "to_state"],
    registry=registry,
)

ai_provider_timeout_seconds = Gauge(
    "ai_provider_timeout_seconds",
    "Current adaptive timeout per provider in seconds",
    ["provider"],
    registry=registry,
)

ai_provider_rate_limited_total = Counter(
    "ai_provider_rate_limited_total",
    "Rate-limit signals (HTTP 429 or exhausted quota headers) per provider",
    ["provider"],
    registry=registry,
)

# ============================================================================
# CACHE METRICS
# ============================================================================

cache_hits_total = Counter(
    "cache_hits_total",
    "Total number of cache hits",
    ["cache_type"],
    registry=registry,
)

cache_misses_total = Counter(
    "cache_misses_total",
    "Total number of cache misses",
    ["cache_type"],
    registry=registry,
)

# ============================================================================
# ORCHESTRATION METRICS
# ============================================================================

ai_queries_total = Counter(
    "ai_queries_total",
    "Total number of orchestrated AI queries",
    ["strategy", "outcome"],  # outcome: success | cache_hit | exhausted
    registry=registry,
)

ai_query_duration_seconds = Histogram(
    "ai_query_duration_seconds",
    "End-to-end orchestrated query latency in seconds",
    ["strategy"],
    buckets=[0.01, 0.1, 0.5, 1.0, 2.0, 3.0, 5.0, 10.0, 20.0, 40.0],
    registry=registry,
)

_CIRCUIT_STATE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics.

    Strips query strings and trailing slashes to keep label cardinality low.
    """
    if "?" in path:
        path = path.split("?")[0]
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/")
    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record HTTP request metrics (RED metrics)."""
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_provider_success(provider: str, latency_seconds: float) -> None:
    ai_provider_requests_total.labels(provider=provider, outcome="success").inc()
    ai_provider_latency_seconds.labels(provider=provider).observe(latency_seconds)


def record_provider_failure(provider: str, error_type: str, latency_seconds: float) -> None:
    ai_provider_requests_total.labels(provider=provider, outcome="failure").inc()
    ai_provider_errors_total.labels(provider=provider, error_type=error_type).inc()
    ai_provider_latency_seconds.labels(provider=provider).observe(latency_seconds)


def record_provider_cancelled(provider: str) -> None:
    ai_provider_requests_total.labels(provider=provider, outcome="cancelled").inc()


def record_tokens_and_cost(provider: str, tokens: int, cost_usd: float) -> None:
    """Record token usage and estimated spend for a provider reply."""
    if tokens > 0:
        ai_provider_tokens_total.labels(provider=provider).inc(tokens)
    if cost_usd > 0:
        ai_provider_cost_usd_total.labels(provider=provider).inc(cost_usd)


def record_malformed_response(provider: str) -> None:
    ai_malformed_responses_total.labels(provider=provider).inc()


def record_circuit_state(provider: str, state: str, transitioned: bool = True) -> None:
    """
    Export a breaker state.

    Args:
        provider: Provider id
        state: closed | half_open | open
        transitioned: Also count this as a transition into ``state``
    """
    circuit_breaker_state.labels(provider=provider).set(_CIRCUIT_STATE_VALUES.get(state, 0))
    if transitioned:
        circuit_breaker_transitions_total.labels(provider=provider, to_state=state).inc()


def record_provider_timeout(provider: str, timeout_seconds: float) -> None:
    ai_provider_timeout_seconds.labels(provider=provider).set(timeout_seconds)


def record_provider_rate_limited(provider: str) -> None:
    ai_provider_rate_limited_total.labels(provider=provider).inc()


def record_cache_hit(cache_type: str) -> None:
    cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str) -> None:
    cache_misses_total.labels(cache_type=cache_type).inc()


def record_ai_query(strategy: str, outcome: str, duration_seconds: float) -> None:
    """Record one orchestrated query (success, cache_hit or exhausted)."""
    ai_queries_total.labels(strategy=strategy, outcome=outcome).inc()
    ai_query_duration_seconds.labels(strategy=strategy).observe(duration_seconds)


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
