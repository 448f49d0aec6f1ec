"""
Unit tests for the per-provider circuit breaker.
"""
import pytest

from figbud.core.circuit_breaker import CircuitBreaker, CircuitState, MAX_BACKOFF_MULTIPLIER


@pytest.fixture
def breaker(fake_clock):
    return CircuitBreaker(
        failure_threshold=3,
        recovery_timeout_seconds=30.0,
        success_threshold=2,
        clock=fake_clock,
    )


def _open(breaker, key="p1"):
    for _ in range(breaker.failure_threshold):
        breaker.record_failure(key)


def test_unknown_provider_starts_closed(breaker):
    assert breaker.is_available("p1")
    state = breaker.get_state("p1")
    assert state.state == CircuitState.CLOSED
    assert state.failure_count == 0
    assert state.backoff_multiplier == 1


def test_opens_at_failure_threshold(breaker):
    breaker.record_failure("p1")
    breaker.record_failure("p1")
    assert breaker.is_available("p1")

    breaker.record_failure("p1")
    assert not breaker.is_available("p1")
    assert breaker.get_state("p1").state == CircuitState.OPEN


def test_success_while_closed_resets_failures(breaker):
    breaker.record_failure("p1")
    breaker.record_failure("p1")
    breaker.record_success("p1")

    state = breaker.get_state("p1")
    assert state.failure_count == 0
    assert state.consecutive_failures == 0

    breaker.record_failure("p1")
    assert breaker.is_available("p1")


def test_open_moves_to_half_open_after_recovery_timeout(breaker, fake_clock):
    _open(breaker)
    fake_clock.advance(29.9)
    assert not breaker.is_available("p1")

    fake_clock.advance(0.1)
    assert breaker.is_available("p1")
    state = breaker.get_state("p1")
    assert state.state == CircuitState.HALF_OPEN
    assert state.success_count == 0


def test_half_open_failure_reopens_and_doubles_backoff(breaker, fake_clock):
    _open(breaker)
    fake_clock.advance(30)
    assert breaker.is_available("p1")

    breaker.record_failure("p1")
    state = breaker.get_state("p1")
    assert state.state == CircuitState.OPEN
    assert state.backoff_multiplier == 2

    # Cooldown is now 60s
    fake_clock.advance(59)
    assert not breaker.is_available("p1")
    fake_clock.advance(1)
    assert breaker.is_available("p1")


def test_backoff_multiplier_caps_at_eight(breaker, fake_clock):
    _open(breaker)
    for _ in range(6):
        fake_clock.advance(30 * MAX_BACKOFF_MULTIPLIER)
        assert breaker.is_available("p1")
        breaker.record_failure("p1")

    assert breaker.get_state("p1").backoff_multiplier == MAX_BACKOFF_MULTIPLIER


def test_half_open_closes_after_success_threshold(breaker, fake_clock):
    _open(breaker)
    fake_clock.advance(30)
    breaker.record_failure("p1")  # reopen, multiplier 2
    fake_clock.advance(60)
    assert breaker.is_available("p1")

    breaker.record_success("p1")
    assert breaker.get_state("p1").state == CircuitState.HALF_OPEN

    breaker.record_success("p1")
    state = breaker.get_state("p1")
    assert state.state == CircuitState.CLOSED
    assert state.failure_count == 0
    assert state.consecutive_failures == 0
    assert state.backoff_multiplier == 1


def test_providers_are_isolated(breaker):
    _open(breaker, "p1")
    assert not breaker.is_available("p1")
    assert breaker.is_available("p2")


def test_get_state_returns_copy(breaker):
    snapshot = breaker.get_state("p1")
    snapshot.failure_count = 99
    assert breaker.get_state("p1").failure_count == 0


def test_reset_and_metrics(breaker):
    _open(breaker, "p1")
    breaker.record_failure("p2")

    metrics = breaker.get_metrics()
    assert metrics["p1"]["state"] == "open"
    assert metrics["p2"]["failure_count"] == 1

    breaker.reset("p1")
    assert breaker.is_available("p1")

    breaker.reset_all()
    assert breaker.get_metrics() == {}
