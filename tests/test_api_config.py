"""
Tests for chat API configuration.
"""
import pytest

from chat_api.config import ApiSettings, LiveKitSettings
from voice_errors import ConfigurationError


def test_livekit_settings_from_env(monkeypatch):
    monkeypatch.setenv("LIVEKIT_API_KEY", "key")
    monkeypatch.setenv("LIVEKIT_API_SECRET", "secret")
    monkeypatch.setenv("LIVEKIT_URL", "wss://example.livekit.cloud")

    settings = LiveKitSettings.from_env()

    assert settings.api_key == "key"
    assert settings.api_secret == "secret"
    assert settings.url == "wss://example.livekit.cloud"
    assert settings.is_configured
    settings.validate()


@pytest.mark.parametrize(
    "key, secret, url",
    [
        ("", "secret", "wss://x"),
        ("key", "", "wss://x"),
        ("key", "secret", ""),
    ],
)
def test_livekit_settings_missing(key, secret, url):
    settings = LiveKitSettings(key, secret, url)

    with pytest.raises(ConfigurationError, match="LiveKit credentials not set"):
        settings.validate()


def test_livekit_settings_invalid_url():
    settings = LiveKitSettings("key", "secret", "https://example.livekit.cloud")

    with pytest.raises(ConfigurationError, match="Invalid LiveKit URL"):
        settings.validate()


def test_api_settings_defaults(monkeypatch):
    for key in (
        "CHAT_RATE_LIMIT",
        "TOKEN_RATE_LIMIT",
        "RATE_LIMIT_WINDOW_SECONDS",
        "RATE_LIMIT_SWEEP_SECONDS",
        "CHAT_API_HOST",
        "CHAT_API_PORT",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)

    settings = ApiSettings.from_env()

    assert settings.chat_rate_limit == 10
    assert settings.token_rate_limit == 20
    assert settings.rate_limit_window_seconds == 60
    assert settings.rate_limit_sweep_seconds == 300
    assert settings.port == 8000
    assert settings.log_level == "INFO"


def test_api_settings_overrides(monkeypatch):
    monkeypatch.setenv("CHAT_RATE_LIMIT", "3  # tight for staging")
    monkeypatch.setenv("CHAT_API_PORT", "9100")

    settings = ApiSettings.from_env()

    assert settings.chat_rate_limit == 3
    assert settings.port == 9100
