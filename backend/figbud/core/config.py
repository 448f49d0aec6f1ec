"""
Environment-driven configuration for the AI orchestration layer.

Values come from process environment variables, optionally seeded from a
``.env`` file at the repository root. Every setting has a default so the
service starts without any configuration (it will simply have no providers
with credentials).

Environment configuration:
- AI_STRATEGY: cascade | parallel | race (default: cascade)
- AI_CIRCUIT_FAILURE_THRESHOLD: failures before a circuit opens (default: 3)
- AI_CIRCUIT_RECOVERY_SECONDS: base open-state cooldown (default: 30)
- AI_CIRCUIT_SUCCESS_THRESHOLD: half-open successes to close (default: 2)
- AI_CACHE_TTL_SECONDS: response cache TTL (default: 3600)
- AI_CACHE_MAX_ENTRIES: response cache capacity (default: 500)
- AI_RACE_STAGGER_SECONDS: per-rank start delay in race mode (default: 0.2)
- AI_RACE_WIDTH: number of ranked providers raced (default: all)
- AI_TIMEOUT_FLOOR_SECONDS: adaptive timeout floor (default: 2.0)
- AI_ADAPTIVE_MIN_SAMPLES: samples before timeouts adapt (default: 5)
- AI_TEMPERATURE / AI_MAX_TOKENS: sampling parameters (default: 0.7 / 1000)
- AI_HTTP_REFERER / AI_APP_TITLE: OpenRouter attribution headers
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from figbud.core.logging import get_logger

logger = get_logger(__name__)

STRATEGIES = ("cascade", "parallel", "race")

_env_loaded = False


def load_environment(env_path: Optional[Path] = None) -> bool:
    """
    Load variables from a ``.env`` file without overriding the environment.

    Returns:
        True if a file was found and loaded, False otherwise
    """
    global _env_loaded
    path = env_path or Path(__file__).parent.parent.parent.parent / ".env"
    _env_loaded = True
    if path.exists():
        load_dotenv(path, override=False)
        logger.info("env_loaded", env_path=str(path))
        return True
    logger.debug("env_file_not_found", expected_path=str(path))
    return False


class AISettings(BaseModel):
    """Tunables for breakers, cache, strategies and the query executor."""

    strategy: str = "cascade"
    failure_threshold: int = Field(3, ge=1)
    recovery_timeout_seconds: float = Field(30.0, gt=0)
    success_threshold: int = Field(2, ge=1)
    cache_ttl_seconds: float = Field(3600.0, gt=0)
    cache_max_entries: int = Field(500, ge=1)
    race_stagger_seconds: float = Field(0.2, ge=0)
    race_width: Optional[int] = Field(None, ge=1)
    timeout_floor_seconds: float = Field(2.0, gt=0)
    adaptive_min_samples: int = Field(5, ge=0)
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(1000, ge=1)
    http_referer: str = "https://figma.com"
    app_title: str = "FigBud Assistant"

    @field_validator("strategy")
    @classmethod
    def validate_strategy(cls, value: str) -> str:
        v = value.lower().strip()
        if v not in STRATEGIES:
            raise ValueError(f"strategy must be one of {list(STRATEGIES)}")
        return v


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def get_ai_settings() -> AISettings:
    """
    Build settings from the current environment.

    Unset or blank variables fall back to model defaults. Invalid values
    raise pydantic.ValidationError so misconfiguration is caught at startup.
    """
    if not _env_loaded:
        load_environment()

    mapping = {
        "strategy": "AI_STRATEGY",
        "failure_threshold": "AI_CIRCUIT_FAILURE_THRESHOLD",
        "recovery_timeout_seconds": "AI_CIRCUIT_RECOVERY_SECONDS",
        "success_threshold": "AI_CIRCUIT_SUCCESS_THRESHOLD",
        "cache_ttl_seconds": "AI_CACHE_TTL_SECONDS",
        "cache_max_entries": "AI_CACHE_MAX_ENTRIES",
        "race_stagger_seconds": "AI_RACE_STAGGER_SECONDS",
        "race_width": "AI_RACE_WIDTH",
        "timeout_floor_seconds": "AI_TIMEOUT_FLOOR_SECONDS",
        "adaptive_min_samples": "AI_ADAPTIVE_MIN_SAMPLES",
        "temperature": "AI_TEMPERATURE",
        "max_tokens": "AI_MAX_TOKENS",
        "http_referer": "AI_HTTP_REFERER",
        "app_title": "AI_APP_TITLE",
    }
    values = {}
    for field_name, env_name in mapping.items():
        raw = _env(env_name)
        if raw is not None:
            values[field_name] = raw

    return AISettings.model_validate(values)
