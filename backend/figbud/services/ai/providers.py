"""
Provider registry and availability filter.

The registry holds the static catalog of upstream chat-completion backends
and resolves which of them can be called for a given caller: a provider is
a candidate only when a credential for its family is known (caller-supplied
keys override environment defaults), its circuit breaker is not open and
it is not waiting out an exhausted rate-limit window.

Environment configuration:
- OPENROUTER_API_KEY: default key for openrouter-* providers
- DEEPSEEK_API_KEY: default key for deepseek-* providers
- OPENAI_API_KEY: default key for openai-* providers
"""
import os
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from figbud.core.circuit_breaker import CircuitBreaker
from figbud.core.logging import get_logger
from figbud.services.ai.rate_limits import RateLimitTracker
from figbud.services.ai.schema import PROVIDER_FAMILIES, ProviderConfig

logger = get_logger(__name__)

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
DEEPSEEK_URL = "https://api.deepseek.com/v1/chat/completions"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"

ENV_KEY_NAMES = {
    "openrouter": "OPENROUTER_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "openai": "OPENAI_API_KEY",
}

HEADER_KEY_NAMES = {
    "x-openrouter-key": "openrouter",
    "x-deepseek-key": "deepseek",
    "x-openai-key": "openai",
}


def default_providers() -> List[ProviderConfig]:
    """Build a fresh copy of the default provider catalog."""
    return [
        ProviderConfig(
            id="openrouter-free-llama",
            name="Llama 3.2 3B (free)",
            family="openrouter",
            model="meta-llama/llama-3.2-3b-instruct:free",
            base_url=OPENROUTER_URL,
            cost_per_1k_tokens=0.0,
            is_free=True,
            priority=1,
            supports_json_format=True,
            base_timeout=3.0,
        ),
        ProviderConfig(
            id="openrouter-free-gemma",
            name="Gemma 2 9B (free)",
            family="openrouter",
            model="google/gemma-2-9b-it:free",
            base_url=OPENROUTER_URL,
            cost_per_1k_tokens=0.0,
            is_free=True,
            priority=2,
            supports_json_format=False,
            base_timeout=3.0,
        ),
        ProviderConfig(
            id="deepseek-direct",
            name="DeepSeek Chat",
            family="deepseek",
            model="deepseek-chat",
            base_url=DEEPSEEK_URL,
            cost_per_1k_tokens=0.00014,
            is_free=False,
            priority=3,
            supports_json_format=False,
            base_timeout=5.0,
        ),
        ProviderConfig(
            id="openai-gpt-3.5-turbo",
            name="GPT-3.5 Turbo",
            family="openai",
            model="gpt-3.5-turbo",
            base_url=OPENAI_URL,
            cost_per_1k_tokens=0.0015,
            is_free=False,
            priority=4,
            supports_json_format=False,
            base_timeout=5.0,
        ),
        ProviderConfig(
            id="openrouter-claude-haiku",
            name="Claude 3 Haiku",
            family="openrouter",
            model="anthropic/claude-3-haiku",
            base_url=OPENROUTER_URL,
            cost_per_1k_tokens=0.00025,
            is_free=False,
            priority=5,
            supports_json_format=True,
            base_timeout=5.0,
        ),
    ]


def _clean(key: Optional[str]) -> Optional[str]:
    if key is None:
        return None
    key = key.strip()
    return key or None


def normalize_caller_keys(caller_keys: Optional[Mapping[str, Optional[str]]]) -> Dict[str, str]:
    """
    Map caller-supplied keys to provider families.

    Accepts either family names (``openrouter``) or header names
    (``X-OpenRouter-Key``), case-insensitively. Blank values are dropped;
    unknown names are ignored.
    """
    result: Dict[str, str] = {}
    for name, value in (caller_keys or {}).items():
        cleaned = _clean(value)
        if cleaned is None:
            continue
        lowered = name.lower().strip()
        family = HEADER_KEY_NAMES.get(lowered, lowered)
        if family in PROVIDER_FAMILIES:
            result[family] = cleaned
    return result


def env_keys() -> Dict[str, str]:
    """Default credentials from the environment, blank values dropped."""
    keys = {}
    for family, env_name in ENV_KEY_NAMES.items():
        value = _clean(os.getenv(env_name))
        if value:
            keys[family] = value
    return keys


@dataclass(frozen=True)
class ProviderCandidate:
    """A provider cleared for this query, paired with the credential to use."""

    provider: ProviderConfig
    api_key: str

    @property
    def id(self) -> str:
        return self.provider.id


class ProviderRegistry:
    """
    Static provider catalog plus the availability filter.

    Args:
        providers: Catalog entries (defaults to default_providers())
        default_keys: Family -> key fallbacks (defaults to environment)
    """

    def __init__(
        self,
        providers: Optional[Iterable[ProviderConfig]] = None,
        default_keys: Optional[Mapping[str, str]] = None,
    ):
        catalog = list(providers) if providers is not None else default_providers()
        ids = [p.id for p in catalog]
        if len(ids) != len(set(ids)):
            raise ValueError("provider ids must be unique")
        self._providers: Dict[str, ProviderConfig] = {p.id: p for p in catalog}
        self._default_keys = (
            normalize_caller_keys(default_keys) if default_keys is not None else env_keys()
        )

    @property
    def providers(self) -> List[ProviderConfig]:
        """All catalog entries in ascending priority."""
        return sorted(self._providers.values(), key=lambda p: (p.priority, p.id))

    def get(self, provider_id: str) -> Optional[ProviderConfig]:
        return self._providers.get(provider_id)

    def resolve_credentials(
        self, caller_keys: Optional[Mapping[str, Optional[str]]] = None
    ) -> Dict[str, str]:
        """Effective family -> key map; caller keys win over defaults."""
        keys = dict(self._default_keys)
        keys.update(normalize_caller_keys(caller_keys))
        return keys

    def available(
        self,
        breaker: CircuitBreaker,
        caller_keys: Optional[Mapping[str, Optional[str]]] = None,
        rate_limits: Optional[RateLimitTracker] = None,
    ) -> List[ProviderCandidate]:
        """
        Providers that may be called right now, in ascending priority.

        Providers without a credential are skipped silently (debug log only);
        providers whose circuit is open, or whose rate-limit window is
        exhausted, are skipped with an info log.
        """
        keys = self.resolve_credentials(caller_keys)
        candidates: List[ProviderCandidate] = []
        for provider in self.providers:
            api_key = keys.get(provider.family)
            if not api_key:
                logger.debug(
                    "ai_provider_credential_missing",
                    provider=provider.id,
                    family=provider.family,
                )
                continue
            if not breaker.is_available(provider.id):
                logger.info("ai_provider_circuit_open", provider=provider.id)
                continue
            if rate_limits is not None and rate_limits.is_limited(provider.id):
                logger.info(
                    "ai_provider_rate_limited",
                    provider=provider.id,
                    reset_in_seconds=round(rate_limits.seconds_until_reset(provider.id), 1),
                )
                continue
            candidates.append(ProviderCandidate(provider=provider, api_key=api_key))
        return candidates
