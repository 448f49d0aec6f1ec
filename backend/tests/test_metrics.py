"""
Unit tests for Prometheus metrics collection.

Tests verify:
- RED metrics (Rate, Errors, Duration) are recorded correctly
- Provider attempt, token and cost metrics are recorded per provider
- Circuit breaker state gauge and transition counter track transitions
- Cache and orchestration metrics are incremented
- Metrics endpoint output is valid Prometheus text
"""
from figbud.core.circuit_breaker import CircuitBreaker
from figbud.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    normalize_endpoint,
    record_ai_query,
    record_cache_hit,
    record_cache_miss,
    record_circuit_state,
    record_http_request,
    record_provider_cancelled,
    record_provider_failure,
    record_provider_rate_limited,
    record_provider_success,
    record_provider_timeout,
    record_tokens_and_cost,
    registry,
)


def _value(name, labels=None):
    return registry.get_sample_value(name, labels or {}) or 0.0


def test_normalize_endpoint():
    assert normalize_endpoint("/chat/message?x=1") == "/chat/message"
    assert normalize_endpoint("/health/") == "/health"
    assert normalize_endpoint("/") == "/"


def test_record_http_request_counts_errors():
    labels = {"method": "POST", "endpoint": "/chat/message", "status": "503"}
    error_labels = {"method": "POST", "endpoint": "/chat/message", "status_code": "503"}
    before = _value("http_requests_total", labels)
    before_errors = _value("http_errors_total", error_labels)

    record_http_request("POST", "/chat/message", 503, 0.2)

    assert _value("http_requests_total", labels) == before + 1
    assert _value("http_errors_total", error_labels) == before_errors + 1


def test_provider_outcomes():
    provider = "metrics-test-provider"
    success = {"provider": provider, "outcome": "success"}
    failure = {"provider": provider, "outcome": "failure"}
    cancelled = {"provider": provider, "outcome": "cancelled"}
    errors = {"provider": provider, "error_type": "timeout"}
    before = (_value("ai_provider_requests_total", success),
              _value("ai_provider_requests_total", failure),
              _value("ai_provider_requests_total", cancelled),
              _value("ai_provider_errors_total", errors))

    record_provider_success(provider, 0.4)
    record_provider_failure(provider, "timeout", 3.0)
    record_provider_cancelled(provider)

    assert _value("ai_provider_requests_total", success) == before[0] + 1
    assert _value("ai_provider_requests_total", failure) == before[1] + 1
    assert _value("ai_provider_requests_total", cancelled) == before[2] + 1
    assert _value("ai_provider_errors_total", errors) == before[3] + 1


def test_tokens_and_cost():
    labels = {"provider": "metrics-cost-provider"}
    before_tokens = _value("ai_provider_tokens_total", labels)
    before_cost = _value("ai_provider_cost_usd_total", labels)

    record_tokens_and_cost("metrics-cost-provider", 1000, 0.0015)
    record_tokens_and_cost("metrics-cost-provider", 0, 0.0)

    assert _value("ai_provider_tokens_total", labels) == before_tokens + 1000
    assert abs(_value("ai_provider_cost_usd_total", labels) - before_cost - 0.0015) < 1e-12


def test_circuit_state_gauge_follows_breaker():
    breaker = CircuitBreaker(failure_threshold=1)
    breaker.record_failure("metrics-breaker")

    assert _value("ai_circuit_breaker_state", {"provider": "metrics-breaker"}) == 2
    assert _value(
        "ai_circuit_breaker_transitions_total",
        {"provider": "metrics-breaker", "to_state": "open"},
    ) == 1

    breaker.reset("metrics-breaker")
    assert _value("ai_circuit_breaker_state", {"provider": "metrics-breaker"}) == 0


def test_record_circuit_state_without_transition():
    labels = {"provider": "metrics-quiet", "to_state": "half_open"}
    record_circuit_state("metrics-quiet", "half_open", transitioned=False)
    assert _value("ai_circuit_breaker_state", {"provider": "metrics-quiet"}) == 1
    assert _value("ai_circuit_breaker_transitions_total", labels) == 0


def test_timeout_gauge():
    record_provider_timeout("metrics-timeout", 2.5)
    assert _value("ai_provider_timeout_seconds", {"provider": "metrics-timeout"}) == 2.5


def test_rate_limited_counter():
    labels = {"provider": "metrics-quota"}
    before = _value("ai_provider_rate_limited_total", labels)

    record_provider_rate_limited("metrics-quota")

    assert _value("ai_provider_rate_limited_total", labels) == before + 1


def test_cache_and_query_metrics():
    hits = {"cache_type": "metrics-test"}
    before_hits = _value("cache_hits_total", hits)
    before_misses = _value("cache_misses_total", hits)
    query_labels = {"strategy": "race", "outcome": "exhausted"}
    before_queries = _value("ai_queries_total", query_labels)

    record_cache_hit("metrics-test")
    record_cache_miss("metrics-test")
    record_ai_query("race", "exhausted", 1.2)

    assert _value("cache_hits_total", hits) == before_hits + 1
    assert _value("cache_misses_total", hits) == before_misses + 1
    assert _value("ai_queries_total", query_labels) == before_queries + 1


def test_get_metrics_prometheus_format():
    record_provider_success("metrics-format", 0.1)
    output = get_metrics().decode("utf-8")

    assert "# HELP ai_provider_requests_total" in output
    assert "# TYPE ai_provider_latency_seconds histogram" in output
    assert get_metrics_content_type().startswith("text/plain")
