"""
Structured JSON event emission (shared).

Used by the chat API and the speech pipeline. Every event carries the same
envelope so that a single request can be followed across components by its
session_id (the per-request id on the server side).
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Component(str, Enum):
    """Event-emitting components."""

    CHAT_API = "chat_api"
    TOKEN_API = "token_api"
    SPEECH_PIPELINE = "speech_pipeline"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


class EventEmitter:
    """Emits structured JSON events to stdout."""

    def __init__(self, component: Component):
        self.component = component

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Emit one event and return it.

        Args:
            event_type: Stable event type string (e.g. "pipeline.stage_completed")
            session_id: Opaque request / session identifier
            severity: Event severity level
            correlation_id: Optional correlation id (defaults to session_id)
            pii: PII metadata dict with contains_pii, fields, handling
            **kwargs: Event-specific fields; None values are dropped
        """
        event: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id,
            "pii": pii or DEFAULT_PII,
        }
        event.update({k: v for k, v in kwargs.items() if v is not None})

        sys.stdout.write(json.dumps(event, ensure_ascii=False, default=str))
        sys.stdout.write("\n")
        sys.stdout.flush()
        return event

    def stage_completed(self, session_id: str, stage: str, latency_ms: int, **kwargs: Any) -> None:
        self.emit(
            "pipeline.stage_completed",
            session_id,
            stage=stage,
            latency_ms=latency_ms,
            **kwargs,
        )

    def stage_failed(
        self,
        session_id: str,
        stage: str,
        error_kind: str,
        latency_ms: int,
        degraded: bool = False,
    ) -> None:
        """Emit pipeline.stage_failed; degraded failures are warnings, not errors."""
        self.emit(
            "pipeline.stage_failed",
            session_id,
            severity=Severity.WARN if degraded else Severity.ERROR,
            stage=stage,
            error_kind=error_kind,
            degraded=degraded,
            latency_ms=latency_ms,
        )

    def short_circuit(self, session_id: str, reason: str, skipped: list[str]) -> None:
        self.emit(
            "pipeline.short_circuit",
            session_id,
            reason=reason,
            skipped_stages=skipped,
        )

    def rate_limit_denied(self, session_id: str, limiter: str, retry_after: int) -> None:
        self.emit(
            "ratelimit.denied",
            session_id,
            severity=Severity.WARN,
            limiter=limiter,
            retry_after=retry_after,
        )

    def token_issued(self, session_id: str, room: str, participant: str, expires_in: int) -> None:
        """Emit token.issued; the participant name is flagged as PII."""
        self.emit(
            "token.issued",
            session_id,
            pii={"contains_pii": True, "fields": ["livekit.participant"], "handling": "raw"},
            livekit={"room": room, "participant": participant},
            expires_in=expires_in,
        )


chat_api_emitter = EventEmitter(Component.CHAT_API)
token_api_emitter = EventEmitter(Component.TOKEN_API)
pipeline_emitter = EventEmitter(Component.SPEECH_PIPELINE)
