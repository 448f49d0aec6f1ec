"""
Unit tests for per-provider rate-limit windows.
"""
import pytest

from figbud.core.metrics import registry
from figbud.services.ai.rate_limits import RateLimitTracker

from conftest import FakeClock

NOW = 1_700_000_000.0


@pytest.fixture
def clock():
    return FakeClock(start=NOW)


@pytest.fixture
def rate_limits(clock):
    return RateLimitTracker(clock=clock)


def _limited_total(provider):
    return registry.get_sample_value("ai_provider_rate_limited_total", {"provider": provider}) or 0.0


@pytest.mark.parametrize("reset, expected", [
    ("1700000030000", NOW + 30),
    ("1700000030", NOW + 30),
    ("30", NOW + 30),
    (" 12.5 ", NOW + 12.5),
])
def test_reset_header_formats(rate_limits, reset, expected):
    window = rate_limits.observe("p", {"x-ratelimit-reset": reset}, 429)

    assert window.remaining == 0
    assert window.reset_at == pytest.approx(expected)


def test_unknown_provider_is_not_limited(rate_limits):
    assert not rate_limits.is_limited("p")
    assert rate_limits.seconds_until_reset("p") == 0.0
    assert rate_limits.get("p") is None


def test_remaining_quota_does_not_limit(rate_limits):
    rate_limits.observe("p", {"x-ratelimit-remaining": "4", "x-ratelimit-reset": "60"}, 200)

    assert not rate_limits.is_limited("p")
    assert rate_limits.get("p").remaining == 4


def test_exhausted_quota_limits_until_reset(rate_limits, clock):
    before = _limited_total("quota")
    rate_limits.observe("quota", {"x-ratelimit-remaining": "0", "x-ratelimit-reset": "20"}, 200)

    assert rate_limits.is_limited("quota")
    assert rate_limits.seconds_until_reset("quota") == pytest.approx(20.0)
    assert _limited_total("quota") == before + 1

    clock.advance(10)
    assert rate_limits.is_limited("quota")
    clock.advance(10)
    assert not rate_limits.is_limited("quota")


def test_too_many_requests_falls_back_to_retry_after(rate_limits):
    rate_limits.observe("p", {"retry-after": "45"}, 429)

    assert rate_limits.is_limited("p")
    assert rate_limits.seconds_until_reset("p") == pytest.approx(45.0)


def test_too_many_requests_without_reset_is_ignored(rate_limits):
    assert rate_limits.observe("p", {}, 429) is None
    assert rate_limits.observe("p", {"retry-after": "Wed, 21 Oct 2015 07:28:00 GMT"}, 429) is None
    assert not rate_limits.is_limited("p")


def test_success_without_headers_keeps_window(rate_limits):
    rate_limits.observe("p", {"x-ratelimit-reset": "30"}, 429)

    assert rate_limits.observe("p", {}, 200) is None
    assert rate_limits.is_limited("p")


def test_snapshot_and_reset(rate_limits):
    rate_limits.observe("a", {"x-ratelimit-reset": "30"}, 429)
    rate_limits.observe("b", {"x-ratelimit-remaining": "9"}, 200)

    snapshot = rate_limits.snapshot()

    assert snapshot["a"] == {"remaining": 0, "reset_at": NOW + 30, "limited": True}
    assert snapshot["b"] == {"remaining": 9, "reset_at": None, "limited": False}

    rate_limits.reset()
    assert rate_limits.snapshot() == {}
