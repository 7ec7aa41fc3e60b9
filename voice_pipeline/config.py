"""
Speech pipeline configuration.

Loads Gemini provider configuration from environment variables.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Local dev convenience: .env_local / .env.local at the repo root.
# Never overrides variables already exported by the shell.
_root = Path(__file__).parent.parent
for _name in (".env_local", ".env.local"):
    _path = _root / _name
    if _path.exists():
        load_dotenv(_path, override=False)


def _parse_int_env(key: str, default: int) -> int:
    """
    Parse integer environment variable, stripping comments and whitespace.

    Handles cases like:
    - "30  # comment" -> 30
    - "30" -> 30
    - None / "abc" -> default
    """
    value = os.environ.get(key)
    if not value:
        return default

    if "#" in value:
        value = value.split("#")[0]

    value = value.strip()

    if not value:
        return default

    try:
        return int(value)
    except ValueError:
        return default


@dataclass
class VoiceConfig:
    """Speech pipeline configuration."""

    # Gemini (STT + LLM + TTS). Empty key is reported per request, not at startup.
    gemini_api_key: str
    gemini_model_stt: str = "gemini-2.5-flash"
    gemini_model_llm: str = "gemini-2.5-flash"
    gemini_model_tts: str = "gemini-2.5-flash-preview-tts"

    # Prebuilt Gemini voice and the PCM rate it returns when the MIME type omits one
    tts_voice: str = "Algenib"
    tts_sample_rate: int = 24000

    # Upper bound for a single provider round trip
    request_timeout_seconds: int = 30

    # Prompt / canned reply set (voice_pipeline/scenarios/<name>.yaml)
    scenario: Optional[str] = None

    @classmethod
    def from_env(cls) -> "VoiceConfig":
        """Load configuration from environment variables."""
        return cls(
            gemini_api_key=os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", ""),
            gemini_model_stt=os.environ.get("GEMINI_MODEL_STT", "gemini-2.5-flash"),
            gemini_model_llm=os.environ.get("GEMINI_MODEL_LLM", "gemini-2.5-flash"),
            gemini_model_tts=os.environ.get("GEMINI_MODEL_TTS", "gemini-2.5-flash-preview-tts"),
            tts_voice=os.environ.get("GEMINI_TTS_VOICE", "Algenib"),
            tts_sample_rate=_parse_int_env("GEMINI_TTS_SAMPLE_RATE", default=24000),
            request_timeout_seconds=_parse_int_env("GEMINI_REQUEST_TIMEOUT_SECONDS", default=30),
            scenario=os.environ.get("ASSISTANT_SCENARIO"),
        )


def get_config() -> VoiceConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = VoiceConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[VoiceConfig] = None
