"""
HTTP client for the chat API, used by the widget.

Maps non-200 responses onto the shared error taxonomy so the session
controller branches on error types, never on message text:
- 429 + quotaExceeded  -> QuotaExceededError (retried with backoff)
- 429                   -> RateLimitError (caller must wait retryAfter)
- 400                   -> ValidationError
- 503 / 504             -> TransientNetworkError
- anything else         -> ProviderError
"""
import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import aiohttp

from logging_setup import get_logger, Component
from voice_errors import (
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    TransientNetworkError,
    ValidationError,
    VoiceChatError,
)

logger = get_logger(Component.WIDGET)


@dataclass(frozen=True)
class TokenInfo:
    token: str
    url: str
    expires_in: int
    room_name: str = ""
    participant_name: str = ""


@dataclass(frozen=True)
class ChatReply:
    """Pipeline output as seen by the widget."""

    transcription: str
    text: str
    audio_data_uri: str = ""


def _retry_after(body: Mapping[str, Any], headers: Mapping[str, str]) -> Optional[float]:
    value = body.get("retryAfter")
    if value is None:
        value = headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def error_from_response(
    status: int,
    body: Mapping[str, Any],
    headers: Optional[Mapping[str, str]] = None,
) -> VoiceChatError:
    """Build the error for a non-200 chat API response."""
    headers = headers or {}
    message = str(body.get("error") or f"HTTP {status}")
    retry_after = _retry_after(body, headers)

    if status == 429:
        if body.get("quotaExceeded"):
            return QuotaExceededError(message, retry_after=retry_after)
        return RateLimitError(message, retry_after=retry_after if retry_after is not None else 60)
    if status == 400:
        return ValidationError(message)
    if status == 503:
        return TransientNetworkError(message)
    if status == 504:
        return TransientNetworkError(message, timeout=True)
    return ProviderError(message)


class WidgetApiClient:
    """
    Talks to /api/token and /api/chat.

    Usage:
        client = WidgetApiClient("http://localhost:8000")
        token = await client.fetch_token("lobby", "visitor_1")
        reply = await client.send_audio("data:audio/wav;base64,...")
        await client.aclose()
    """

    def __init__(self, base_url: str, *, timeout_seconds: float = 60.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._http_session: Optional[aiohttp.ClientSession] = None

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            )
        return self._http_session

    async def aclose(self) -> None:
        """Close the HTTP session. Safe to call multiple times."""
        if self._http_session is not None:
            try:
                await self._http_session.close()
            finally:
                self._http_session = None

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        session = self._get_or_create_session()
        try:
            async with session.post(url, json=payload) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = {}
                if not isinstance(body, dict):
                    body = {}
                if response.status != 200:
                    error = error_from_response(response.status, body, response.headers)
                    logger.warning(
                        "Chat API request failed",
                        path=path,
                        status=response.status,
                        error_kind=error.kind.value,
                    )
                    raise error
                return body
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(f"Request to {path} timed out", timeout=True) from e
        except aiohttp.ClientConnectionError as e:
            raise TransientNetworkError(f"Could not reach chat API: {e}") from e

    async def fetch_token(self, room_name: str, participant_name: str) -> TokenInfo:
        body = await self._post(
            "/api/token",
            {"roomName": room_name, "participantName": participant_name},
        )
        return TokenInfo(
            token=body.get("token", ""),
            url=body.get("url", ""),
            expires_in=int(body.get("expiresIn", 0)),
            room_name=body.get("roomName", room_name),
            participant_name=body.get("participantName", participant_name),
        )

    async def send_audio(self, audio_data_uri: str) -> ChatReply:
        body = await self._post("/api/chat", {"audioDataUri": audio_data_uri})
        ai_response = body.get("aiResponse") or {}
        return ChatReply(
            transcription=body.get("transcription") or "",
            text=ai_response.get("text") or "",
            audio_data_uri=ai_response.get("audioDataUri") or "",
        )
