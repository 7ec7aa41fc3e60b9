"""
Gemini speech stages via the REST API.

Uses API key authentication and a pooled aiohttp session.
- transcribe: audio data URI -> text (JSON response schema)
- generate_response: transcription -> assistant reply (JSON response schema)
- synthesize_speech: reply -> WAV data URI (raw L16 PCM wrapped into WAV)

Provider failures are raised as structured VoiceChatError subclasses so the
orchestrator never has to inspect message text.
"""
import asyncio
import base64
import json
import re
import time
from typing import Any, Dict, Optional

import aiohttp

from logging_setup import get_logger, Component
from voice_errors import (
    ConfigurationError,
    ProviderError,
    QuotaExceededError,
    TransientNetworkError,
)
from .audio import parse_data_uri, pcm_rate_from_mime, pcm_to_wav, to_data_uri
from .config import VoiceConfig, get_config
from .instructions import get_assistant_prompt, get_transcription_prompt

API_BASE = "https://generativelanguage.googleapis.com/v1beta"

stt_logger = get_logger(Component.STT)
llm_logger = get_logger(Component.LLM)
tts_logger = get_logger(Component.TTS)

_RETRY_DELAY_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def parse_retry_delay(error_body: Dict[str, Any]) -> Optional[float]:
    """
    Retry delay in seconds from a google.rpc.RetryInfo detail, if present.

    Example detail: {"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "12s"}
    """
    details = (error_body.get("error") or {}).get("details") or []
    for detail in details:
        if not isinstance(detail, dict):
            continue
        if not str(detail.get("@type", "")).endswith("google.rpc.RetryInfo"):
            continue
        match = _RETRY_DELAY_RE.match(str(detail.get("retryDelay", "")))
        if match:
            return float(match.group(1))
    return None


def raise_for_provider_error(status: int, body_text: str) -> None:
    """Map a non-200 Gemini response onto the error taxonomy."""
    try:
        body = json.loads(body_text) if body_text else {}
    except json.JSONDecodeError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    error = body.get("error") or {}
    provider_status = str(error.get("status", ""))
    message = error.get("message") or body_text[:200] or f"HTTP {status}"

    if status == 429 or provider_status == "RESOURCE_EXHAUSTED":
        raise QuotaExceededError(
            f"Gemini quota exceeded: {message}",
            retry_after=parse_retry_delay(body),
        )
    if status in (401, 403) or provider_status in ("UNAUTHENTICATED", "PERMISSION_DENIED"):
        raise ConfigurationError(f"Gemini credentials rejected: {message}")
    if status in (503, 502):
        raise TransientNetworkError(f"Gemini unavailable: {message}")
    if status == 504:
        raise TransientNetworkError(f"Gemini timeout: {message}", timeout=True)
    raise ProviderError(f"Gemini API error: {status} - {message}")


def first_part(data: Dict[str, Any]) -> Dict[str, Any]:
    """First content part of the first candidate ({} if there is none)."""
    candidates = data.get("candidates") or []
    if not candidates:
        return {}
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return parts[0] if parts else {}


def parse_json_field(data: Dict[str, Any], field: str) -> str:
    """
    Read `field` from a JSON-schema constrained text response.

    A response without candidates (e.g. blocked) yields "".
    """
    text = first_part(data).get("text")
    if not text:
        return ""
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProviderError(f"Gemini returned malformed JSON for {field}") from e
    value = parsed.get(field, "") if isinstance(parsed, dict) else ""
    return value if isinstance(value, str) else ""


def _string_schema(field: str) -> Dict[str, Any]:
    return {
        "responseMimeType": "application/json",
        "responseSchema": {
            "type": "OBJECT",
            "properties": {field: {"type": "STRING"}},
            "required": [field],
        },
    }


class GeminiSpeechStages:
    """The three pipeline stages backed by Gemini models."""

    def __init__(self, config: Optional[VoiceConfig] = None):
        self._config = config
        self._http_session: Optional[aiohttp.ClientSession] = None

    @property
    def config(self) -> VoiceConfig:
        return self._config or get_config()

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        """
        Get or create the shared HTTP session.

        Reuses TCP connections between requests to reduce latency.
        """
        if self._http_session is None or self._http_session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
            self._http_session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=10, ttl_dns_cache=300),
                timeout=timeout,
            )
            llm_logger.info(
                "Gemini connection pool created",
                total_timeout_ms=self.config.request_timeout_seconds * 1000,
            )
        return self._http_session

    async def aclose(self) -> None:
        """Close the HTTP session. Safe to call multiple times."""
        if self._http_session is not None:
            try:
                await self._http_session.close()
            finally:
                self._http_session = None

    async def _generate(self, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        api_key = self.config.gemini_api_key
        if not api_key:
            raise ConfigurationError("Server configuration error: GEMINI_API_KEY not set.")

        url = f"{API_BASE}/models/{model}:generateContent"
        session = self._get_or_create_session()
        try:
            async with session.post(url, params={"key": api_key}, json=payload) as response:
                if response.status != 200:
                    raise_for_provider_error(response.status, await response.text())
                return await response.json()
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(f"Gemini request timeout ({model})", timeout=True) from e
        except aiohttp.ClientConnectionError as e:
            raise TransientNetworkError(f"Gemini network error ({model}): {e}") from e

    async def transcribe(self, audio_data_uri: str) -> str:
        mime_type, audio = parse_data_uri(audio_data_uri)
        payload = {
            "contents": [{
                "role": "user",
                "parts": [
                    {"text": get_transcription_prompt(self.config.scenario)},
                    {"inlineData": {
                        "mimeType": mime_type,
                        "data": base64.b64encode(audio).decode("ascii"),
                    }},
                ],
            }],
            "generationConfig": _string_schema("transcription"),
        }

        t_start = time.perf_counter()
        data = await self._generate(self.config.gemini_model_stt, payload)
        transcription = parse_json_field(data, "transcription").strip()
        stt_logger.info(
            "Transcription completed",
            model=self.config.gemini_model_stt,
            audio_bytes=len(audio),
            transcript_length=len(transcription),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return transcription

    async def generate_response(self, transcription: str) -> str:
        payload = {
            "contents": [{
                "role": "user",
                "parts": [{"text": get_assistant_prompt(transcription, self.config.scenario)}],
            }],
            "generationConfig": _string_schema("response"),
        }

        t_start = time.perf_counter()
        data = await self._generate(self.config.gemini_model_llm, payload)
        reply = parse_json_field(data, "response").strip()
        llm_logger.info(
            "Response generated",
            model=self.config.gemini_model_llm,
            response_length=len(reply),
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return reply

    async def synthesize_speech(self, text: str) -> str:
        if not text.strip():
            return ""

        payload = {
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {
                        "prebuiltVoiceConfig": {"voiceName": self.config.tts_voice},
                    },
                },
            },
        }

        t_start = time.perf_counter()
        data = await self._generate(self.config.gemini_model_tts, payload)
        media = first_part(data).get("inlineData") or {}
        if not media.get("data"):
            tts_logger.error("Gemini TTS: no audio in response")
            raise ProviderError("no media returned")

        pcm = base64.b64decode(media["data"])
        rate = pcm_rate_from_mime(media.get("mimeType", ""), default=self.config.tts_sample_rate)
        tts_logger.info(
            "Speech synthesized",
            model=self.config.gemini_model_tts,
            voice=self.config.tts_voice,
            text_length=len(text),
            pcm_bytes=len(pcm),
            sample_rate=rate,
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        return to_data_uri(pcm_to_wav(pcm, sample_rate=rate), "audio/wav")
