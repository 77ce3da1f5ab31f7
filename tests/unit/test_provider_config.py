"""Tests for provider and assistant configuration loading."""

import os

import pytest

from word_pilot_providers import ProviderConfigError, load_provider_config
from word_pilot_providers.config import DEFAULT_PROVIDER, PROVIDER_ENV_VAR

from services.assistant.app.errors import AssistantError
from services.assistant.app.settings import ENV_PREFIX, load_settings


@pytest.fixture(autouse=True)
def clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith(("OPENAI_", "GEMINI_", "MYPROV_", ENV_PREFIX)):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv(PROVIDER_ENV_VAR, raising=False)


def test_default_provider_is_openai() -> None:
    assert DEFAULT_PROVIDER == "openai"


def test_load_openai_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(PROVIDER_ENV_VAR, "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "key")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4.1")
    cfg = load_provider_config()
    assert cfg.name == "openai"
    assert cfg.api_key == "key"
    assert cfg.settings.temperature == 0.7
    assert cfg.settings.max_output_tokens == 4096


def test_missing_variables_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(PROVIDER_ENV_VAR, "gemini")
    with pytest.raises(ProviderConfigError):
        load_provider_config()


def test_mock_provider_needs_no_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(PROVIDER_ENV_VAR, "mock")
    assert load_provider_config().name == "mock"


def test_custom_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MYPROV_API_KEY", "abc")
    monkeypatch.setenv("MYPROV_MODEL", "model")
    monkeypatch.setenv("MYPROV_TEMPERATURE", "0.4")
    monkeypatch.setenv("MYPROV_TOP_P", "0.9")
    cfg = load_provider_config(prefix="myprov")
    assert cfg.name == "myprov"
    assert cfg.settings.temperature == 0.4
    assert cfg.settings.top_p == 0.9


def test_invalid_temperature_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MYPROV_API_KEY", "abc")
    monkeypatch.setenv("MYPROV_MODEL", "model")
    monkeypatch.setenv("MYPROV_TEMPERATURE", "warm")
    with pytest.raises(ProviderConfigError):
        load_provider_config(prefix="myprov")


def test_assistant_settings_defaults() -> None:
    settings = load_settings()
    assert settings.record_store == "memory"
    assert settings.summary_threshold == 5
    assert settings.summary_batch_size == 5
    assert settings.track_usage is False


def test_assistant_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORD_PILOT_RECORD_STORE", "postgres")
    monkeypatch.setenv("WORD_PILOT_DATABASE_URL", "postgresql://localhost/word_pilot")
    monkeypatch.setenv("WORD_PILOT_SUMMARY_THRESHOLD", "8")
    monkeypatch.setenv("WORD_PILOT_TRACK_USAGE", "true")
    monkeypatch.setenv("WORD_PILOT_ALLOWED_ORIGINS", "http://a.test, http://b.test")
    settings = load_settings()
    assert settings.record_store == "postgres"
    assert settings.summary_threshold == 8
    assert settings.track_usage is True
    assert settings.origins() == ["http://a.test", "http://b.test"]


def test_assistant_settings_require_backend_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORD_PILOT_KV_STORE", "redis")
    with pytest.raises(AssistantError):
        load_settings()


def test_assistant_settings_reject_invalid_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORD_PILOT_SUMMARY_THRESHOLD", "0")
    with pytest.raises(AssistantError):
        load_settings()
