"""
Unit tests for the provider registry and availability filter.
"""
import pytest

from figbud.core.circuit_breaker import CircuitBreaker
from figbud.services.ai.providers import (
    ProviderRegistry,
    default_providers,
    env_keys,
    normalize_caller_keys,
)
from figbud.services.ai.rate_limits import RateLimitTracker

from conftest import FakeClock, make_provider


def test_default_catalog():
    providers = default_providers()
    by_id = {p.id: p for p in providers}

    assert [p.priority for p in providers] == [1, 2, 3, 4, 5]
    assert by_id["openrouter-free-llama"].is_free
    assert by_id["openrouter-free-llama"].model == "meta-llama/llama-3.2-3b-instruct:free"
    json_mode = {p.id for p in providers if p.supports_json_format}
    assert json_mode == {"openrouter-free-llama", "openrouter-claude-haiku"}
    assert by_id["openai-gpt-3.5-turbo"].cost_per_1k_tokens == pytest.approx(0.0015)
    assert by_id["openrouter-claude-haiku"].family == "openrouter"
    assert all(p.timeout == p.base_timeout for p in providers)


def test_catalog_fields_are_frozen_except_timeout():
    provider = make_provider("p", base_timeout=5.0)
    provider.timeout = 2.5
    assert provider.timeout == 2.5
    with pytest.raises(Exception):
        provider.priority = 9


def test_normalize_caller_keys_accepts_headers_and_families():
    keys = normalize_caller_keys({
        "X-OpenRouter-Key": "or",
        "deepseek": "ds",
        "X-OpenAI-Key": "   ",
        "X-Unknown-Key": "zz",
        "openai": None,
    })
    assert keys == {"openrouter": "or", "deepseek": "ds"}


def test_env_keys_ignore_blank_values(monkeypatch):
    monkeypatch.setenv("OPENROUTER_API_KEY", "or-env")
    monkeypatch.setenv("DEEPSEEK_API_KEY", "  ")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    assert env_keys() == {"openrouter": "or-env"}


def test_available_filters_missing_credentials():
    registry = ProviderRegistry(default_keys={"deepseek": "ds"})
    candidates = registry.available(CircuitBreaker())

    assert [c.id for c in candidates] == ["deepseek-direct"]
    assert candidates[0].api_key == "ds"


def test_available_caller_keys_win():
    registry = ProviderRegistry(default_keys={"openrouter": "env"})
    candidates = registry.available(CircuitBreaker(), {"X-OpenRouter-Key": "mine"})

    assert [c.id for c in candidates] == [
        "openrouter-free-llama",
        "openrouter-free-gemma",
        "openrouter-claude-haiku",
    ]
    assert {c.api_key for c in candidates} == {"mine"}


def test_available_skips_open_circuits():
    registry = ProviderRegistry(default_keys={"openrouter": "k"})
    breaker = CircuitBreaker(failure_threshold=1)
    breaker.record_failure("openrouter-free-llama")

    ids = [c.id for c in registry.available(breaker)]

    assert "openrouter-free-llama" not in ids
    assert ids[0] == "openrouter-free-gemma"


def test_available_skips_exhausted_rate_limits():
    registry = ProviderRegistry(default_keys={"openrouter": "k"})
    clock = FakeClock(start=1_700_000_000.0)
    rate_limits = RateLimitTracker(clock=clock)
    rate_limits.observe("openrouter-free-llama", {"x-ratelimit-reset": "30"}, 429)
    rate_limits.observe(
        "openrouter-free-gemma",
        {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1700000010"},
        200,
    )

    ids = [c.id for c in registry.available(CircuitBreaker(), rate_limits=rate_limits)]
    assert ids == ["openrouter-claude-haiku"]

    clock.advance(10)
    ids = [c.id for c in registry.available(CircuitBreaker(), rate_limits=rate_limits)]
    assert ids == ["openrouter-free-gemma", "openrouter-claude-haiku"]

    clock.advance(20)
    ids = [c.id for c in registry.available(CircuitBreaker(), rate_limits=rate_limits)]
    assert ids[0] == "openrouter-free-llama"


def test_duplicate_ids_rejected():
    with pytest.raises(ValueError):
        ProviderRegistry(providers=[make_provider("x"), make_provider("x")], default_keys={})


def test_unknown_family_rejected():
    with pytest.raises(ValueError):
        make_provider("x", family="anthropic")
