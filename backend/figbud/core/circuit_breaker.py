"""
Per-provider circuit breakers for upstream AI backends.

One CircuitBreaker instance tracks every provider id it is asked about;
state for an id is created lazily on first use and kept for the life of the
process.

State machine (per provider):
- closed: available. Each failure increments failure_count; reaching
  failure_threshold (default 3) opens the circuit. A success resets the
  failure counters.
- open: unavailable until recovery_timeout * backoff_multiplier seconds have
  passed since the last failure, then half-open.
- half_open: available for probe traffic. Any failure reopens the circuit
  and doubles backoff_multiplier (capped at 8). success_threshold (default
  2) successes close it and reset backoff_multiplier to 1.

Transitions for a key are evaluated and applied under a lock and never span
an await, so concurrent attempts from the same event loop (or threads) see
consistent state.
"""
import time
from dataclasses import dataclass, replace
from enum import Enum
from threading import Lock
from typing import Callable, Dict, Optional

from figbud.core.logging import get_logger
from figbud.core.metrics import record_circuit_state

logger = get_logger(__name__)

MAX_BACKOFF_MULTIPLIER = 8


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, bypass provider
    HALF_OPEN = "half_open"  # Probing recovery


@dataclass
class ProviderCircuit:
    """Mutable breaker state for one provider."""
    failure_count: int = 0
    consecutive_failures: int = 0
    last_failure_time: Optional[float] = None
    last_success_time: Optional[float] = None
    state: CircuitState = CircuitState.CLOSED
    success_count: int = 0
    backoff_multiplier: int = 1

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "consecutive_failures": self.consecutive_failures,
            "success_count": self.success_count,
            "backoff_multiplier": self.backoff_multiplier,
            "last_failure_time": self.last_failure_time,
            "last_success_time": self.last_success_time,
        }


class CircuitBreaker:
    """
    Keyed circuit breaker.

    Configuration:
    - failure_threshold: failures while closed before opening (default 3)
    - recovery_timeout_seconds: base open-state cooldown (default 30s)
    - success_threshold: half-open successes before closing (default 2)
    - clock: time source in seconds, injectable for tests
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        recovery_timeout_seconds: float = 30.0,
        success_threshold: int = 2,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout_seconds = recovery_timeout_seconds
        self.success_threshold = success_threshold
        self._clock = clock

        self._lock = Lock()
        self._circuits: Dict[str, ProviderCircuit] = {}

    def _get_or_create(self, key: str) -> ProviderCircuit:
        circuit = self._circuits.get(key)
        if circuit is None:
            circuit = ProviderCircuit()
            self._circuits[key] = circuit
            record_circuit_state(key, circuit.state.value, transitioned=False)
        return circuit

    def _cooldown(self, circuit: ProviderCircuit) -> float:
        return self.recovery_timeout_seconds * circuit.backoff_multiplier

    def _update_state(self, key: str, circuit: ProviderCircuit, now: float) -> None:
        """Move an open circuit to half-open once its cooldown has elapsed."""
        if circuit.state != CircuitState.OPEN or circuit.last_failure_time is None:
            return
        if now - circuit.last_failure_time >= self._cooldown(circuit):
            circuit.state = CircuitState.HALF_OPEN
            circuit.success_count = 0
            record_circuit_state(key, circuit.state.value)
            logger.info(
                "circuit_breaker_half_open",
                provider=key,
                backoff_multiplier=circuit.backoff_multiplier,
            )

    def is_available(self, key: str) -> bool:
        """True unless the provider's circuit is open."""
        with self._lock:
            circuit = self._get_or_create(key)
            self._update_state(key, circuit, self._clock())
            return circuit.state != CircuitState.OPEN

    def get_state(self, key: str) -> ProviderCircuit:
        """Snapshot of a provider's circuit (a copy; mutating it has no effect)."""
        with self._lock:
            circuit = self._get_or_create(key)
            self._update_state(key, circuit, self._clock())
            return replace(circuit)

    def record_success(self, key: str) -> None:
        with self._lock:
            now = self._clock()
            circuit = self._get_or_create(key)
            self._update_state(key, circuit, now)
            circuit.last_success_time = now

            if circuit.state == CircuitState.HALF_OPEN:
                circuit.success_count += 1
                if circuit.success_count >= self.success_threshold:
                    circuit.state = CircuitState.CLOSED
                    circuit.failure_count = 0
                    circuit.consecutive_failures = 0
                    circuit.success_count = 0
                    circuit.backoff_multiplier = 1
                    record_circuit_state(key, circuit.state.value)
                    logger.info("circuit_breaker_closed", provider=key)
            elif circuit.state == CircuitState.CLOSED:
                circuit.failure_count = 0
                circuit.consecutive_failures = 0

    def record_failure(self, key: str) -> None:
        with self._lock:
            now = self._clock()
            circuit = self._get_or_create(key)
            self._update_state(key, circuit, now)
            circuit.failure_count += 1
            circuit.consecutive_failures += 1
            circuit.last_failure_time = now

            if circuit.state == CircuitState.HALF_OPEN:
                circuit.state = CircuitState.OPEN
                circuit.backoff_multiplier = min(
                    circuit.backoff_multiplier * 2, MAX_BACKOFF_MULTIPLIER
                )
                record_circuit_state(key, circuit.state.value)
                logger.warning(
                    "circuit_breaker_reopened",
                    provider=key,
                    backoff_multiplier=circuit.backoff_multiplier,
                    cooldown_seconds=self._cooldown(circuit),
                )
            elif (
                circuit.state == CircuitState.CLOSED
                and circuit.failure_count >= self.failure_threshold
            ):
                circuit.state = CircuitState.OPEN
                record_circuit_state(key, circuit.state.value)
                logger.warning(
                    "circuit_breaker_opened",
                    provider=key,
                    failures=circuit.failure_count,
                    cooldown_seconds=self._cooldown(circuit),
                )

    def reset(self, key: str) -> None:
        """Force a provider's circuit back to a fresh closed state."""
        with self._lock:
            self._circuits[key] = ProviderCircuit()
            record_circuit_state(key, CircuitState.CLOSED.value)

    def reset_all(self) -> None:
        with self._lock:
            for key in self._circuits:
                record_circuit_state(key, CircuitState.CLOSED.value)
            self._circuits.clear()

    def get_metrics(self) -> Dict[str, dict]:
        """Per-provider breaker state for monitoring."""
        with self._lock:
            now = self._clock()
            result = {}
            for key, circuit in self._circuits.items():
                self._update_state(key, circuit, now)
                result[key] = circuit.to_dict()
            return result
