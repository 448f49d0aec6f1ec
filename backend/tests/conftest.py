"""Shared fixtures for AI orchestration tests.

Provides a controllable clock, provider/candidate factories and a scripted
executor that stands in for real HTTP calls.
"""
import asyncio
from typing import Dict, List, Tuple, Union

import pytest

from figbud.core.cancellation import CancellationToken, RequestCancelled
from figbud.services.ai.providers import ProviderCandidate
from figbud.services.ai.schema import AIMetadata, AIResponse, ProviderConfig


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_provider(provider_id: str, priority: int = 1, **kwargs) -> ProviderConfig:
    values = {
        "id": provider_id,
        "name": provider_id.upper(),
        "family": "openrouter",
        "model": f"test/{provider_id}",
        "base_url": "https://llm.test/v1/chat/completions",
        "priority": priority,
        "base_timeout": 5.0,
    }
    values.update(kwargs)
    return ProviderConfig(**values)


def make_candidate(provider_id: str, priority: int = 1, api_key: str = "test-key", **kwargs) -> ProviderCandidate:
    return ProviderCandidate(provider=make_provider(provider_id, priority, **kwargs), api_key=api_key)


Outcome = Union[str, BaseException]
Step = Tuple[float, Outcome]


class ScriptedExecutor:
    """
    Executor stub: each provider id maps to (delay_seconds, outcome).

    A string outcome becomes the reply text; an exception instance is raised.
    A list of (delay, outcome) pairs is consumed one per call, the last repeating.
    The delay honours the attempt's cancellation token like the real executor.
    """

    def __init__(self, script: Dict[str, Union[Step, List[Step]]]):
        self.script = script
        self.calls: List[str] = []
        self.api_keys: Dict[str, str] = {}
        self.cancelled: List[str] = []

    async def execute(self, candidate, query, token=None):
        provider_id = candidate.provider.id
        self.calls.append(provider_id)
        self.api_keys[provider_id] = candidate.api_key
        step = self.script[provider_id]
        if isinstance(step, list):
            delay, outcome = step.pop(0) if len(step) > 1 else step[0]
        else:
            delay, outcome = step
        token = token or CancellationToken()
        try:
            await token.guard(asyncio.sleep(delay))
        except RequestCancelled:
            self.cancelled.append(provider_id)
            raise
        if isinstance(outcome, BaseException):
            raise outcome
        return AIResponse(
            text=outcome,
            metadata=AIMetadata(model=candidate.provider.model, is_free=candidate.provider.is_free),
            provider=provider_id,
            tokens_used=42,
            cost=0.0,
        )


@pytest.fixture
def fake_clock():
    return FakeClock()
