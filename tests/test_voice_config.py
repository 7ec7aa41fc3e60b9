"""
Tests for speech pipeline configuration.

Verifies:
- Configuration loading from environment
- Default values
- Lenient integer parsing
"""
import pytest

from voice_pipeline import config as config_module
from voice_pipeline.config import VoiceConfig, _parse_int_env, get_config


_GEMINI_VARS = (
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "GEMINI_MODEL_STT",
    "GEMINI_MODEL_LLM",
    "GEMINI_MODEL_TTS",
    "GEMINI_TTS_VOICE",
    "GEMINI_TTS_SAMPLE_RATE",
    "GEMINI_REQUEST_TIMEOUT_SECONDS",
    "ASSISTANT_SCENARIO",
)


@pytest.fixture
def clean_env(monkeypatch):
    for key in _GEMINI_VARS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_config_from_env_all_fields(clean_env):
    """Test configuration loading with all fields set."""
    clean_env.setenv("GEMINI_API_KEY", "test_gemini_key")
    clean_env.setenv("GEMINI_MODEL_STT", "stt-model")
    clean_env.setenv("GEMINI_MODEL_LLM", "llm-model")
    clean_env.setenv("GEMINI_MODEL_TTS", "tts-model")
    clean_env.setenv("GEMINI_TTS_VOICE", "Kore")
    clean_env.setenv("GEMINI_TTS_SAMPLE_RATE", "16000")
    clean_env.setenv("GEMINI_REQUEST_TIMEOUT_SECONDS", "12")
    clean_env.setenv("ASSISTANT_SCENARIO", "concise")

    config = VoiceConfig.from_env()

    assert config.gemini_api_key == "test_gemini_key"
    assert config.gemini_model_stt == "stt-model"
    assert config.gemini_model_llm == "llm-model"
    assert config.gemini_model_tts == "tts-model"
    assert config.tts_voice == "Kore"
    assert config.tts_sample_rate == 16000
    assert config.request_timeout_seconds == 12
    assert config.scenario == "concise"


def test_config_from_env_defaults(clean_env):
    """Test configuration with default values."""
    config = VoiceConfig.from_env()

    assert config.gemini_api_key == ""
    assert config.gemini_model_stt == "gemini-2.5-flash"
    assert config.gemini_model_llm == "gemini-2.5-flash"
    assert config.gemini_model_tts == "gemini-2.5-flash-preview-tts"
    assert config.tts_voice == "Algenib"
    assert config.tts_sample_rate == 24000
    assert config.request_timeout_seconds == 30
    assert config.scenario is None


def test_google_api_key_fallback(clean_env):
    clean_env.setenv("GOOGLE_API_KEY", "google_key")

    assert VoiceConfig.from_env().gemini_api_key == "google_key"


def test_gemini_key_takes_precedence(clean_env):
    clean_env.setenv("GEMINI_API_KEY", "gemini_key")
    clean_env.setenv("GOOGLE_API_KEY", "google_key")

    assert VoiceConfig.from_env().gemini_api_key == "gemini_key"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("30", 30),
        ("30  # seconds", 30),
        ("  45 ", 45),
        ("abc", 7),
        ("# only a comment", 7),
        ("", 7),
    ],
)
def test_parse_int_env(monkeypatch, raw, expected):
    monkeypatch.setenv("SOME_INT", raw)
    assert _parse_int_env("SOME_INT", 7) == expected


def test_parse_int_env_unset(monkeypatch):
    monkeypatch.delenv("SOME_INT", raising=False)
    assert _parse_int_env("SOME_INT", 7) == 7


def test_get_config_is_cached(clean_env):
    clean_env.setattr(config_module, "_config", None)
    first = get_config()
    assert get_config() is first
