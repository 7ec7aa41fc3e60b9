"""
Entry point for running the chat API server.

Usage:
    python -m chat_api

Host, port and log level come from CHAT_API_HOST, CHAT_API_PORT and LOG_LEVEL.
"""
import uvicorn

from logging_setup import setup_logging
from .config import settings

if __name__ == "__main__":
    setup_logging(level=settings.log_level, use_json=True)

    uvicorn.run(
        "chat_api.server:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
