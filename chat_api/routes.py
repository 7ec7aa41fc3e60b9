"""
Chat API routes.

- POST /api/token: LiveKit session credential (20 requests/min per client)
- GET  /api/token: configuration health probe
- POST /api/chat: speech pipeline (10 requests/min per client)

The rate limit is checked before the body is read, so a flooding client is
turned away without any parsing work.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from logging_setup import get_logger, Component
from observability.events import chat_api_emitter
from voice_errors import (
    ErrorKind,
    QuotaExceededError,
    ValidationError,
    VoiceChatError,
    classify_error,
    get_user_message,
    status_for,
)
from voice_pipeline.gemini import GeminiSpeechStages
from voice_pipeline.orchestrator import STAGE_GENERATE, SpeechPipelineOrchestrator
from .config import settings
from .rate_limiter import FixedWindowRateLimiter, RateLimitResult, client_key
from .token_issuer import TokenIssuer, health_status


router = APIRouter(prefix="/api", tags=["chat"])
logger = get_logger(Component.CHAT_API)
token_logger = get_logger(Component.TOKEN_API)

chat_limiter = FixedWindowRateLimiter(
    settings.chat_rate_limit,
    settings.rate_limit_window_seconds,
    name="chat",
    sweep_interval_seconds=settings.rate_limit_sweep_seconds,
)
token_limiter = FixedWindowRateLimiter(
    settings.token_rate_limit,
    settings.rate_limit_window_seconds,
    name="token",
    sweep_interval_seconds=settings.rate_limit_sweep_seconds,
)

speech_stages = GeminiSpeechStages()
orchestrator = SpeechPipelineOrchestrator(speech_stages)
token_issuer = TokenIssuer()


def get_orchestrator() -> SpeechPipelineOrchestrator:
    return orchestrator


def get_token_issuer() -> TokenIssuer:
    return token_issuer


class TokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_name: Optional[str] = Field(None, alias="roomName")
    participant_name: Optional[str] = Field(None, alias="participantName")


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    audio_data_uri: Optional[str] = Field(None, alias="audioDataUri")


def _new_request_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _read_body(request: Request, model: type[BaseModel]) -> Any:
    """Parse the JSON body into model; any failure is a ValidationError."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Request body must be valid JSON") from e
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError("Invalid request fields") from e


def rate_limited_response(result: RateLimitResult, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "error": message,
            "rateLimitExceeded": True,
            "retryAfter": result.retry_after,
        },
        headers=result.headers(),
    )


def error_response(
    error: BaseException,
    headers: Optional[Dict[str, str]] = None,
    message: Optional[str] = None,
) -> JSONResponse:
    """
    Render any failure as {"error": ..., "timestamp": ...} with a stable status.

    VoiceChatError carries its own status; other exceptions are classified.
    An explicit message replaces the error's own text in the body.
    """
    headers = dict(headers or {})

    if isinstance(error, VoiceChatError):
        status = error.status_code
        kind = error.kind
        default_message = error.message
    else:
        kind = classify_error(error)
        status = status_for(kind)
        default_message = get_user_message(kind)

    if message is None:
        if kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT):
            # Transport errors carry provider hosts and raw upstream text
            message = get_user_message(kind)
        else:
            message = default_message

    content: Dict[str, Any] = {"error": message, "timestamp": _timestamp()}

    if kind is ErrorKind.QUOTA:
        content["quotaExceeded"] = True
        retry_after = error.retry_after_seconds if isinstance(error, VoiceChatError) else None
        if retry_after is not None:
            content["retryAfter"] = retry_after
            headers["Retry-After"] = str(retry_after)

    return JSONResponse(status_code=status, content=content, headers=headers)


@router.post("/token")
async def issue_token(
    request: Request,
    issuer: TokenIssuer = Depends(get_token_issuer),
):
    """Issue a 10 minute LiveKit credential for {roomName, participantName}."""
    request_id = _new_request_id("tok")
    limit = token_limiter.check(client_key(request))
    if not limit.allowed:
        chat_api_emitter.rate_limit_denied(request_id, limiter="token", retry_after=limit.retry_after)
        return rate_limited_response(
            limit,
            f"Too many token requests. Please wait {limit.retry_after} seconds.",
        )

    try:
        body = await _read_body(request, TokenRequest)
        credential = issuer.issue(body.room_name, body.participant_name, request_id=request_id)
    except ValidationError as e:
        token_logger.warning("Token request rejected", session_id=request_id, error=e.message)
        return error_response(e)
    except VoiceChatError as e:
        token_logger.error("Token issuance failed", session_id=request_id, error=e.message, error_kind=e.kind.value)
        return error_response(e)
    except Exception as e:
        token_logger.exception("Unexpected token issuance error", session_id=request_id, error_type=type(e).__name__)
        return error_response(e)

    return JSONResponse(content=credential.to_response(), headers=limit.headers())


@router.get("/token")
async def token_health():
    """Report whether LiveKit is configured, without exposing values."""
    return health_status()


@router.post("/chat")
async def chat(
    request: Request,
    pipeline: SpeechPipelineOrchestrator = Depends(get_orchestrator),
):
    """Run {audioDataUri} through transcription, response generation and synthesis."""
    request_id = _new_request_id("req")
    limit = chat_limiter.check(client_key(request))
    if not limit.allowed:
        chat_api_emitter.rate_limit_denied(request_id, limiter="chat", retry_after=limit.retry_after)
        return rate_limited_response(
            limit,
            f"Rate limit exceeded. Please wait {limit.retry_after} seconds before trying again.",
        )

    log = logger.with_session(request_id)
    try:
        body = await _read_body(request, ChatRequest)
        log.info("Processing audio request", remaining=limit.remaining)
        result = await pipeline.process(body.audio_data_uri, request_id=request_id)
    except ValidationError as e:
        log.warning("Chat request rejected", error=e.message)
        return error_response(e)
    except QuotaExceededError as e:
        log.warning("AI provider quota exceeded", stage=e.stage)
        message = (
            "AI service is busy. Please try again shortly."
            if e.stage == STAGE_GENERATE
            else get_user_message(ErrorKind.QUOTA)
        )
        return error_response(e, headers=limit.headers(), message=message)
    except Exception as e:
        log.exception("Chat request failed", error_type=type(e).__name__)
        return error_response(e)

    log.info(
        "Request completed",
        degraded=result.degraded,
        transcript_length=len(result.transcription),
    )
    return JSONResponse(content=result.to_response(), headers=limit.headers())
