"""
Error taxonomy shared by the chat API, the speech pipeline and the widget.

Every failure carries a structured ErrorKind so callers branch on the kind
rather than on message text. Message pattern matching is kept only as the
last resort for exceptions raised by third-party code.
"""
import asyncio
import math
from enum import Enum
from typing import Dict, Optional

import aiohttp


class ErrorKind(str, Enum):
    """Stable error categories."""
    QUOTA = "quota"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    NETWORK = "network"
    TIMEOUT = "timeout"
    DEVICE = "device"
    UNKNOWN = "unknown"


class VoiceChatError(Exception):
    """Base class for every error the widget stack raises on purpose."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    status_code: int = 500

    def __init__(self, message: str, *, retry_after: Optional[float] = None):
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after

    @property
    def retry_after_seconds(self) -> Optional[int]:
        """Retry-After value in whole seconds (rounded up), if known."""
        if self.retry_after is None:
            return None
        return max(1, math.ceil(self.retry_after))


class ValidationError(VoiceChatError):
    """Malformed or missing input. Raised before any side effect."""
    kind = ErrorKind.VALIDATION
    status_code = 400


class RateLimitError(VoiceChatError):
    """The caller exceeded the local request ceiling."""
    kind = ErrorKind.RATE_LIMIT
    status_code = 429

    def __init__(self, message: str, *, retry_after: float, limit: Optional[int] = None):
        super().__init__(message, retry_after=retry_after)
        self.limit = limit


class QuotaExceededError(VoiceChatError):
    """The upstream AI provider is saturated; retry with backoff."""
    kind = ErrorKind.QUOTA
    status_code = 429

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[float] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message, retry_after=retry_after)
        self.stage = stage


class ConfigurationError(VoiceChatError):
    """Missing or malformed deployment secrets. Not retryable."""
    kind = ErrorKind.CONFIGURATION
    status_code = 500


class TransientNetworkError(VoiceChatError):
    """Network failure or timeout talking to a remote service."""
    kind = ErrorKind.NETWORK
    status_code = 503

    def __init__(self, message: str, *, timeout: bool = False, retry_after: Optional[float] = None):
        super().__init__(message, retry_after=retry_after)
        self.timeout = timeout
        if timeout:
            self.kind = ErrorKind.TIMEOUT
            self.status_code = 504


class DeviceError(VoiceChatError):
    """Microphone permission or audio hardware failure (client side only)."""
    kind = ErrorKind.DEVICE
    status_code = 500


class ProviderError(VoiceChatError):
    """Generic upstream failure with no more specific classification."""
    kind = ErrorKind.UNKNOWN
    status_code = 500


def classify_error(error: BaseException) -> ErrorKind:
    """
    Classify an exception into an ErrorKind.

    Order:
    1) structured kind carried by VoiceChatError
    2) exception type (timeouts, aiohttp connection failures)
    3) message patterns
    """
    if isinstance(error, VoiceChatError):
        return error.kind

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, aiohttp.ServerTimeoutError)):
        return ErrorKind.TIMEOUT

    if isinstance(error, (aiohttp.ClientConnectionError, ConnectionError)):
        return ErrorKind.NETWORK

    error_str = str(error).lower()

    if (
        "quota" in error_str
        or "rate limit" in error_str
        or "429" in error_str
        or "resource_exhausted" in error_str
    ):
        return ErrorKind.QUOTA

    if "timeout" in error_str or "timed out" in error_str:
        return ErrorKind.TIMEOUT

    if "network" in error_str or "connection" in error_str:
        return ErrorKind.NETWORK

    return ErrorKind.UNKNOWN


_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.QUOTA: 429,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFIGURATION: 500,
    ErrorKind.NETWORK: 503,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.DEVICE: 500,
    ErrorKind.UNKNOWN: 500,
}


def status_for(kind: ErrorKind) -> int:
    """HTTP status used when an unexpected exception of this kind escapes."""
    return _STATUS_BY_KIND[kind]


_USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.QUOTA: "AI service quota exceeded. Please try again in a few moments.",
    ErrorKind.RATE_LIMIT: "Too many requests. Please wait a moment.",
    ErrorKind.VALIDATION: "Invalid request.",
    ErrorKind.CONFIGURATION: "Server configuration error.",
    ErrorKind.NETWORK: "Service temporarily unavailable.",
    ErrorKind.TIMEOUT: "Request timeout. Please try again.",
    ErrorKind.DEVICE: "Failed to access microphone. Please check permissions.",
}


def get_user_message(kind: ErrorKind) -> str:
    """User-facing text for an error kind."""
    return _USER_MESSAGES.get(kind, "Internal Server Error")
