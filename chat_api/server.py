"""
HTTP server for the chat API.
Can be run standalone (python -m chat_api) or mounted into an existing app.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from logging_setup import get_logger, Component
from voice_errors import ValidationError, VoiceChatError
from . import routes
from .routes import error_response, router

logger = get_logger(Component.CHAT_API)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Own the rate limiter sweep tasks and the provider connection pool."""
    await routes.chat_limiter.start()
    await routes.token_limiter.start()
    logger.info("Chat API started")
    try:
        yield
    finally:
        await routes.chat_limiter.stop()
        await routes.token_limiter.stop()
        await routes.speech_stages.aclose()
        logger.info("Chat API stopped")


app = FastAPI(title="Landing Voice Widget API", lifespan=lifespan)
app.include_router(router)


@app.exception_handler(VoiceChatError)
async def handle_voice_chat_error(_request: Request, exc: VoiceChatError):
    return error_response(exc)


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(_request: Request, _exc: RequestValidationError):
    # Input problems are 400 in this API, not FastAPI's default 422
    return error_response(ValidationError("Invalid request"))


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok", "component": "chat_api"}
