"""
LiveKit session credential issuance.

Issues short-lived access tokens scoped to a single room with
publish + subscribe + data-publish grants.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from livekit import api

from logging_setup import get_logger, Component
from observability.events import token_api_emitter
from voice_errors import ValidationError
from .config import LiveKitSettings


logger = get_logger(Component.TOKEN_API)

# Letters, digits, hyphen, underscore: nothing that could escape into the grant
NAME_PATTERN = re.compile(r"[a-zA-Z0-9_-]+")

TOKEN_TTL = timedelta(minutes=10)


@dataclass(frozen=True)
class SessionCredential:
    """Credential for one media session."""

    token: str
    server_url: str
    expires_in: int  # seconds
    room_name: str
    participant_name: str

    def to_response(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "url": self.server_url,
            "expiresIn": self.expires_in,
            "roomName": self.room_name,
            "participantName": self.participant_name,
        }


def validate_identifiers(room_name: Optional[str], participant_name: Optional[str]) -> None:
    """Raise ValidationError unless both identifiers are present and well-formed."""
    if not room_name or not participant_name:
        raise ValidationError("Missing roomName or participantName")

    if not isinstance(room_name, str) or not isinstance(participant_name, str):
        raise ValidationError("roomName and participantName must be strings")

    if not NAME_PATTERN.fullmatch(room_name) or not NAME_PATTERN.fullmatch(participant_name):
        raise ValidationError(
            "Invalid roomName or participantName format. "
            "Use only letters, numbers, hyphens, and underscores."
        )


class TokenIssuer:
    """Issues LiveKit access tokens."""

    def __init__(
        self,
        settings_provider: Callable[[], LiveKitSettings] = LiveKitSettings.from_env,
        *,
        ttl: timedelta = TOKEN_TTL,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._settings_provider = settings_provider
        self._ttl = ttl
        self._clock = clock

    def issue(
        self,
        room_name: Optional[str],
        participant_name: Optional[str],
        *,
        request_id: Optional[str] = None,
    ) -> SessionCredential:
        """
        Issue a credential for participant_name in room_name.

        Raises:
            ValidationError: identifiers missing or outside [a-zA-Z0-9_-]
            ConfigurationError: LiveKit credentials missing or URL not ws(s)://
        """
        validate_identifiers(room_name, participant_name)

        settings = self._settings_provider()
        if not settings.is_configured:
            logger.error(
                "LiveKit credentials not configured",
                has_api_key=bool(settings.api_key),
                has_api_secret=bool(settings.api_secret),
                has_url=bool(settings.url),
            )
        settings.validate()

        request_id = request_id or f"tok_{uuid.uuid4().hex[:12]}"
        metadata = json.dumps({
            "createdAt": self._clock().isoformat(),
            "roomName": room_name,
        })

        grants = api.VideoGrants(
            room_join=True,
            room=room_name,
            can_publish=True,
            can_subscribe=True,
            can_publish_data=True,
        )

        token = (
            api.AccessToken(settings.api_key, settings.api_secret)
            .with_identity(participant_name)
            .with_name(participant_name)
            .with_ttl(self._ttl)
            .with_metadata(metadata)
            .with_grants(grants)
            .to_jwt()
        )

        credential = SessionCredential(
            token=token,
            server_url=settings.url,
            expires_in=int(self._ttl.total_seconds()),
            room_name=room_name,
            participant_name=participant_name,
        )

        logger.info_pii("Token issued", room=room_name, participant=participant_name)
        token_api_emitter.token_issued(
            request_id,
            room=room_name,
            participant=participant_name,
            expires_in=credential.expires_in,
        )
        return credential


def health_status(settings: Optional[LiveKitSettings] = None) -> Dict[str, Any]:
    """Body of the GET /api/token health probe."""
    settings = settings or LiveKitSettings.from_env()
    configured = settings.is_configured
    return {
        "status": "ok" if configured else "misconfigured",
        "livekit": {
            "configured": configured,
            "url": "set" if settings.url else "missing",
            "credentials": "set" if settings.has_credentials else "missing",
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
