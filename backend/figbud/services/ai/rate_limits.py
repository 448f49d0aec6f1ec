"""
Per-provider rate-limit windows learned from upstream response headers.

Providers report quota with ``x-ratelimit-remaining`` and
``x-ratelimit-reset``. A provider is skipped while its remaining quota is
zero and its reset time lies in the future. An HTTP 429 marks the quota
exhausted until ``x-ratelimit-reset`` (or ``retry-after``); a 429 with
neither header is left to the circuit breaker.

Reset values are accepted as epoch milliseconds, epoch seconds or seconds
from now.
"""
import math
import time
from dataclasses import dataclass, replace
from threading import Lock
from typing import Callable, Dict, Mapping, Optional

from figbud.core.logging import get_logger
from figbud.core.metrics import record_provider_rate_limited

logger = get_logger(__name__)

REMAINING_HEADER = "x-ratelimit-remaining"
RESET_HEADER = "x-ratelimit-reset"
RETRY_AFTER_HEADER = "retry-after"

_EPOCH_MILLISECONDS = 1e12
_EPOCH_SECONDS = 1e9


@dataclass
class RateLimitWindow:
    """Last known quota for one provider."""
    remaining: Optional[int] = None
    reset_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {"remaining": self.remaining, "reset_at": self.reset_at}


def _header_number(headers: Mapping[str, str], name: str) -> Optional[float]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


class RateLimitTracker:
    """
    Keyed rate-limit tracker shared by the executor and the registry.

    Args:
        clock: Wall-clock time source in seconds, injectable for tests
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = Lock()
        self._windows: Dict[str, RateLimitWindow] = {}

    @staticmethod
    def _resolve_reset(value: float, now: float) -> float:
        if value >= _EPOCH_MILLISECONDS:
            return value / 1000.0
        if value >= _EPOCH_SECONDS:
            return value
        return now + max(value, 0.0)

    @staticmethod
    def _limited(window: RateLimitWindow, now: float) -> bool:
        return (
            window.remaining is not None
            and window.remaining <= 0
            and window.reset_at is not None
            and now < window.reset_at
        )

    def observe(
        self, provider_id: str, headers: Mapping[str, str], status_code: int
    ) -> Optional[RateLimitWindow]:
        """
        Update a provider's window from one response.

        Returns a copy of the updated window, or None when the response
        carried no usable rate-limit information.
        """
        remaining = _header_number(headers, REMAINING_HEADER)
        reset = _header_number(headers, RESET_HEADER)
        if status_code == 429:
            if reset is None:
                reset = _header_number(headers, RETRY_AFTER_HEADER)
            if reset is None:
                return None
            remaining = 0
        elif remaining is None:
            return None

        with self._lock:
            now = self._clock()
            window = self._windows.setdefault(provider_id, RateLimitWindow())
            window.remaining = int(remaining)
            if reset is not None:
                window.reset_at = self._resolve_reset(reset, now)
            limited = self._limited(window, now)
            snapshot = replace(window)

        if limited:
            record_provider_rate_limited(provider_id)
            logger.warning(
                "ai_provider_rate_limit_exhausted",
                provider=provider_id,
                status_code=status_code,
                reset_in_seconds=round(snapshot.reset_at - now, 1),
            )
        return snapshot

    def is_limited(self, provider_id: str) -> bool:
        """True while the provider has no quota left and its reset is ahead."""
        with self._lock:
            window = self._windows.get(provider_id)
            return window is not None and self._limited(window, self._clock())

    def seconds_until_reset(self, provider_id: str) -> float:
        """Seconds until a limited provider's quota resets (0 when not limited)."""
        with self._lock:
            window = self._windows.get(provider_id)
            now = self._clock()
            if window is None or not self._limited(window, now):
                return 0.0
            return window.reset_at - now

    def get(self, provider_id: str) -> Optional[RateLimitWindow]:
        with self._lock:
            window = self._windows.get(provider_id)
            return replace(window) if window is not None else None

    def snapshot(self) -> Dict[str, dict]:
        """Per-provider windows for monitoring."""
        with self._lock:
            now = self._clock()
            return {
                key: dict(window.to_dict(), limited=self._limited(window, now))
                for key, window in self._windows.items()
            }

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
