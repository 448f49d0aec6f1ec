"""
Unit tests for environment-driven AI settings.
"""
import os

import pytest
from pydantic import ValidationError

from figbud.core.config import AISettings, get_ai_settings, load_environment

ENV_NAMES = (
    "AI_STRATEGY",
    "AI_CIRCUIT_FAILURE_THRESHOLD",
    "AI_RACE_WIDTH",
    "AI_RACE_STAGGER_SECONDS",
    "AI_CACHE_TTL_SECONDS",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = get_ai_settings()
    assert settings.strategy == "cascade"
    assert settings.failure_threshold == 3
    assert settings.recovery_timeout_seconds == 30.0
    assert settings.cache_max_entries == 500
    assert settings.race_width is None


def test_environment_overrides(clean_env):
    clean_env.setenv("AI_STRATEGY", " Race ")
    clean_env.setenv("AI_CIRCUIT_FAILURE_THRESHOLD", "5")
    clean_env.setenv("AI_RACE_WIDTH", "2")
    clean_env.setenv("AI_RACE_STAGGER_SECONDS", "0.05")

    settings = get_ai_settings()

    assert settings.strategy == "race"
    assert settings.failure_threshold == 5
    assert settings.race_width == 2
    assert settings.race_stagger_seconds == 0.05


def test_blank_values_fall_back_to_defaults(clean_env):
    clean_env.setenv("AI_CACHE_TTL_SECONDS", "   ")
    assert get_ai_settings().cache_ttl_seconds == 3600.0


def test_invalid_values_rejected(clean_env):
    clean_env.setenv("AI_STRATEGY", "round-robin")
    with pytest.raises(ValidationError):
        get_ai_settings()


def test_threshold_must_be_positive():
    with pytest.raises(ValidationError):
        AISettings(failure_threshold=0)


def test_load_environment_without_file(tmp_path):
    assert load_environment(tmp_path / "missing.env") is False


def test_load_environment_does_not_override(tmp_path, clean_env):
    env_file = tmp_path / ".env"
    env_file.write_text("AI_STRATEGY=parallel\nAI_RACE_WIDTH=3\n")
    clean_env.setenv("AI_STRATEGY", "race")

    try:
        assert load_environment(env_file) is True
        settings = get_ai_settings()
    finally:
        os.environ.pop("AI_RACE_WIDTH", None)

    assert settings.strategy == "race"
    assert settings.race_width == 3
