"""
Configuration management for the chat API.
Loads from environment variables with sensible defaults.

LiveKit settings are validated per request rather than at import time, so a
misconfigured deployment still starts and reports itself through the
GET /api/token health probe.
"""
import os
from dataclasses import dataclass

from voice_errors import ConfigurationError
from voice_pipeline.config import _parse_int_env


@dataclass(frozen=True)
class LiveKitSettings:
    """Media session provider credentials."""

    api_key: str
    api_secret: str
    url: str

    @classmethod
    def from_env(cls) -> "LiveKitSettings":
        return cls(
            api_key=os.getenv("LIVEKIT_API_KEY", ""),
            api_secret=os.getenv("LIVEKIT_API_SECRET", ""),
            url=os.getenv("LIVEKIT_URL", ""),
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)

    @property
    def is_configured(self) -> bool:
        return self.has_credentials and bool(self.url)

    def validate(self) -> None:
        """
        Raise ConfigurationError unless credentials are present and the URL
        is a WebSocket URL.
        """
        if not self.is_configured:
            raise ConfigurationError("Server configuration error: LiveKit credentials not set.")
        if not self.url.startswith(("ws://", "wss://")):
            raise ConfigurationError("Invalid LiveKit URL configuration.")


@dataclass(frozen=True)
class ApiSettings:
    """Chat API server settings."""

    chat_rate_limit: int = 10
    token_rate_limit: int = 20
    rate_limit_window_seconds: int = 60
    rate_limit_sweep_seconds: int = 300

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ApiSettings":
        return cls(
            chat_rate_limit=_parse_int_env("CHAT_RATE_LIMIT", default=10),
            token_rate_limit=_parse_int_env("TOKEN_RATE_LIMIT", default=20),
            rate_limit_window_seconds=_parse_int_env("RATE_LIMIT_WINDOW_SECONDS", default=60),
            rate_limit_sweep_seconds=_parse_int_env("RATE_LIMIT_SWEEP_SECONDS", default=300),
            host=os.getenv("CHAT_API_HOST", "0.0.0.0"),
            port=_parse_int_env("CHAT_API_PORT", default=8000),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


# Global settings instance
settings = ApiSettings.from_env()
