"""
Speech pipeline orchestration.

Runs transcription -> response generation -> speech synthesis in sequence.
Each stage is fallible on its own:
- silence (empty transcription) short-circuits with a canned reply
- an empty reply short-circuits with a canned fallback, no audio
- a synthesis failure degrades to a text-only answer
- quota failures in transcription or generation surface as QuotaExceededError
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

from logging_setup import get_logger, Component
from observability.events import EventEmitter, pipeline_emitter
from voice_errors import (
    ErrorKind,
    QuotaExceededError,
    ValidationError,
    classify_error,
)
from .audio import AUDIO_DATA_URI_PREFIX, parse_data_uri
from .instructions import get_reply


logger = get_logger(Component.SPEECH_PIPELINE)

STAGE_TRANSCRIBE = "transcribe"
STAGE_GENERATE = "generate_response"
STAGE_SYNTHESIZE = "synthesize_speech"


class SpeechStages(Protocol):
    """The three external AI calls the orchestrator sequences."""

    async def transcribe(self, audio_data_uri: str) -> str: ...

    async def generate_response(self, transcription: str) -> str: ...

    async def synthesize_speech(self, text: str) -> str: ...


@dataclass(frozen=True)
class AIResponse:
    text: str
    audio_data_uri: str = ""


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one pipeline run."""

    transcription: str
    ai_response: AIResponse

    @property
    def degraded(self) -> bool:
        """True when the reply carries no audio."""
        return not self.ai_response.audio_data_uri

    def to_response(self) -> Dict[str, Any]:
        return {
            "transcription": self.transcription,
            "aiResponse": {
                "text": self.ai_response.text,
                "audioDataUri": self.ai_response.audio_data_uri,
            },
        }


def validate_audio_data_uri(audio_data_uri: Any) -> None:
    """Raise ValidationError unless the input is an audio data URI."""
    if not audio_data_uri:
        raise ValidationError("Missing audioDataUri")
    if not isinstance(audio_data_uri, str) or not audio_data_uri.startswith(AUDIO_DATA_URI_PREFIX):
        raise ValidationError("Invalid audio data format")


class SpeechPipelineOrchestrator:
    """
    Sequences the speech stages for one request.

    Usage:
        orchestrator = SpeechPipelineOrchestrator(GeminiSpeechStages())
        result = await orchestrator.process("data:audio/wav;base64,...")
    """

    def __init__(
        self,
        stages: SpeechStages,
        *,
        scenario: Optional[str] = None,
        emitter: EventEmitter = pipeline_emitter,
        now: Callable[[], float] = time.perf_counter,
    ):
        self.stages = stages
        self.scenario = scenario
        self.emitter = emitter
        self._now = now

    def _elapsed_ms(self, started: float) -> int:
        return int((self._now() - started) * 1000)

    async def process(self, audio_data_uri: Any, *, request_id: Optional[str] = None) -> PipelineResult:
        """
        Run the pipeline for one audio clip.

        Raises:
            ValidationError: input is not an audio data URI
            QuotaExceededError: provider quota hit during transcription or generation
            VoiceChatError / Exception: any other stage 1-2 failure
        """
        validate_audio_data_uri(audio_data_uri)
        request_id = request_id or f"req_{uuid.uuid4().hex[:12]}"
        log = logger.with_session(request_id)
        t_request = self._now()

        # An empty recording never reaches the provider
        _, audio = parse_data_uri(audio_data_uri)
        if not audio:
            log.info("Empty audio payload, treating as silence")
            return self._not_understood(request_id)

        transcription = await self._run_stage(
            request_id, STAGE_TRANSCRIBE, self.stages.transcribe, audio_data_uri
        )
        transcription = (transcription or "").strip()
        if not transcription:
            log.info("Empty transcription, skipping response generation")
            return self._not_understood(request_id)

        reply = await self._run_stage(
            request_id, STAGE_GENERATE, self.stages.generate_response, transcription
        )
        reply = (reply or "").strip()
        if not reply:
            log.warning("Empty AI response")
            self.emitter.short_circuit(request_id, reason="empty_response", skipped=[STAGE_SYNTHESIZE])
            return PipelineResult(
                transcription=transcription,
                ai_response=AIResponse(text=get_reply("empty_response", self.scenario)),
            )

        audio_data_uri_out = await self._synthesize(request_id, reply)

        result = PipelineResult(
            transcription=transcription,
            ai_response=AIResponse(text=reply, audio_data_uri=audio_data_uri_out),
        )
        self.emitter.emit(
            "pipeline.completed",
            request_id,
            degraded=result.degraded,
            latency_ms=self._elapsed_ms(t_request),
        )
        return result

    def _not_understood(self, request_id: str) -> PipelineResult:
        self.emitter.short_circuit(
            request_id,
            reason="silence",
            skipped=[STAGE_GENERATE, STAGE_SYNTHESIZE],
        )
        return PipelineResult(
            transcription="",
            ai_response=AIResponse(text=get_reply("not_understood", self.scenario)),
        )

    async def _run_stage(self, request_id: str, stage: str, call, argument: str) -> str:
        """Run stage 1 or 2; quota failures become QuotaExceededError."""
        started = self._now()
        try:
            output = await call(argument)
        except Exception as e:
            kind = classify_error(e)
            self.emitter.stage_failed(request_id, stage, kind.value, self._elapsed_ms(started))
            logger.error(
                "Pipeline stage failed",
                session_id=request_id,
                stage=stage,
                error_kind=kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            if kind is ErrorKind.QUOTA and not isinstance(e, QuotaExceededError):
                raise QuotaExceededError(
                    str(e),
                    retry_after=getattr(e, "retry_after", None),
                    stage=stage,
                ) from e
            if isinstance(e, QuotaExceededError) and e.stage is None:
                e.stage = stage
            raise

        self.emitter.stage_completed(
            request_id,
            stage,
            self._elapsed_ms(started),
            output_length=len(output or ""),
        )
        return output

    async def _synthesize(self, request_id: str, text: str) -> str:
        """Stage 3; any failure degrades to an empty audio field."""
        started = self._now()
        try:
            audio = await self.stages.synthesize_speech(text)
        except Exception as e:
            kind = classify_error(e)
            self.emitter.stage_failed(
                request_id,
                STAGE_SYNTHESIZE,
                kind.value,
                self._elapsed_ms(started),
                degraded=True,
            )
            logger.warning(
                "Speech synthesis failed, returning text only",
                session_id=request_id,
                error_kind=kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ""

        self.emitter.stage_completed(request_id, STAGE_SYNTHESIZE, self._elapsed_ms(started))
        return audio or ""

