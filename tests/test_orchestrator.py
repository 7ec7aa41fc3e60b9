"""
Tests for the speech pipeline orchestrator.

Verifies:
- Stage ordering and inputs
- Silence and empty-reply short circuits
- Text-only degradation when synthesis fails
- Quota failures surfacing with the failing stage
"""
import json

import pytest

from voice_errors import (
    ProviderError,
    QuotaExceededError,
    TransientNetworkError,
    ValidationError,
)
from voice_pipeline.audio import to_data_uri
from voice_pipeline.orchestrator import (
    STAGE_GENERATE,
    STAGE_SYNTHESIZE,
    STAGE_TRANSCRIBE,
    SpeechPipelineOrchestrator,
)

AUDIO = to_data_uri(b"RIFF....WAVE", "audio/wav")
REPLY_AUDIO = "data:audio/wav;base64,UklGRg=="


class FakeStages:
    """Records calls; each stage returns its configured value or raises it."""

    def __init__(self, transcription="hello", reply="Hi there!", audio=REPLY_AUDIO):
        self.transcription = transcription
        self.reply = reply
        self.audio = audio
        self.calls = []

    async def _answer(self, stage, argument, value):
        self.calls.append((stage, argument))
        if isinstance(value, Exception):
            raise value
        return value

    async def transcribe(self, audio_data_uri):
        return await self._answer(STAGE_TRANSCRIBE, audio_data_uri, self.transcription)

    async def generate_response(self, transcription):
        return await self._answer(STAGE_GENERATE, transcription, self.reply)

    async def synthesize_speech(self, text):
        return await self._answer(STAGE_SYNTHESIZE, text, self.audio)


@pytest.fixture(autouse=True)
def default_scenario(monkeypatch):
    monkeypatch.delenv("ASSISTANT_SCENARIO", raising=False)


def _events(capsys):
    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
    return [e for e in lines if "event_type" in e]


@pytest.mark.asyncio
async def test_full_pipeline():
    stages = FakeStages()
    result = await SpeechPipelineOrchestrator(stages).process(AUDIO, request_id="req_1")

    assert stages.calls == [
        (STAGE_TRANSCRIBE, AUDIO),
        (STAGE_GENERATE, "hello"),
        (STAGE_SYNTHESIZE, "Hi there!"),
    ]
    assert result.to_response() == {
        "transcription": "hello",
        "aiResponse": {"text": "Hi there!", "audioDataUri": REPLY_AUDIO},
    }
    assert not result.degraded


@pytest.mark.asyncio
async def test_stage_events(capsys):
    await SpeechPipelineOrchestrator(FakeStages()).process(AUDIO, request_id="req_1")

    events = _events(capsys)
    completed = [e["stage"] for e in events if e["event_type"] == "pipeline.stage_completed"]
    assert completed == [STAGE_TRANSCRIBE, STAGE_GENERATE, STAGE_SYNTHESIZE]
    assert events[-1]["event_type"] == "pipeline.completed"
    assert all(e["session_id"] == "req_1" for e in events)


@pytest.mark.asyncio
async def test_silence_short_circuits():
    stages = FakeStages(transcription="   ")
    result = await SpeechPipelineOrchestrator(stages).process(AUDIO)

    assert [c[0] for c in stages.calls] == [STAGE_TRANSCRIBE]
    assert result.transcription == ""
    assert result.ai_response.text == "Sorry, I couldn't understand that. Please try again."
    assert result.ai_response.audio_data_uri == ""


@pytest.mark.asyncio
async def test_empty_recording_never_reaches_provider():
    stages = FakeStages()
    result = await SpeechPipelineOrchestrator(stages).process("data:audio/wav;base64,")

    assert stages.calls == []
    assert result.ai_response.text == "Sorry, I couldn't understand that. Please try again."


@pytest.mark.asyncio
async def test_empty_reply_uses_fallback_without_audio():
    stages = FakeStages(reply="")
    result = await SpeechPipelineOrchestrator(stages).process(AUDIO)

    assert [c[0] for c in stages.calls] == [STAGE_TRANSCRIBE, STAGE_GENERATE]
    assert result.transcription == "hello"
    assert result.ai_response.text == "I'm not sure how to respond to that."
    assert result.degraded


@pytest.mark.asyncio
async def test_scenario_replies():
    stages = FakeStages(reply="")
    result = await SpeechPipelineOrchestrator(stages, scenario="concise").process(AUDIO)

    assert result.ai_response.text == "Could you rephrase that?"


@pytest.mark.asyncio
async def test_synthesis_failure_degrades(capsys):
    stages = FakeStages(audio=ProviderError("no media returned"))
    result = await SpeechPipelineOrchestrator(stages).process(AUDIO, request_id="req_1")

    assert result.transcription == "hello"
    assert result.ai_response.text == "Hi there!"
    assert result.ai_response.audio_data_uri == ""
    assert result.degraded

    failed = [e for e in _events(capsys) if e["event_type"] == "pipeline.stage_failed"]
    assert failed[0]["stage"] == STAGE_SYNTHESIZE
    assert failed[0]["degraded"] is True


@pytest.mark.asyncio
async def test_synthesis_quota_also_degrades():
    stages = FakeStages(audio=QuotaExceededError("tts quota"))
    result = await SpeechPipelineOrchestrator(stages).process(AUDIO)

    assert result.degraded
    assert result.ai_response.text == "Hi there!"


@pytest.mark.asyncio
async def test_transcription_quota_carries_stage():
    stages = FakeStages(transcription=QuotaExceededError("quota", retry_after=10))

    with pytest.raises(QuotaExceededError) as excinfo:
        await SpeechPipelineOrchestrator(stages).process(AUDIO)

    assert excinfo.value.stage == STAGE_TRANSCRIBE
    assert excinfo.value.retry_after == 10
    assert len(stages.calls) == 1


@pytest.mark.asyncio
async def test_generation_quota_from_untyped_error():
    stages = FakeStages(reply=RuntimeError("429 RESOURCE_EXHAUSTED"))

    with pytest.raises(QuotaExceededError) as excinfo:
        await SpeechPipelineOrchestrator(stages).process(AUDIO)

    assert excinfo.value.stage == STAGE_GENERATE
    assert [c[0] for c in stages.calls] == [STAGE_TRANSCRIBE, STAGE_GENERATE]


@pytest.mark.asyncio
async def test_other_stage_failure_propagates():
    stages = FakeStages(transcription=TransientNetworkError("down"))

    with pytest.raises(TransientNetworkError):
        await SpeechPipelineOrchestrator(stages).process(AUDIO)


@pytest.mark.asyncio
@pytest.mark.parametrize("audio", [None, "", 42, "data:image/png;base64,AAAA", "hello"])
async def test_invalid_input(audio):
    stages = FakeStages()

    with pytest.raises(ValidationError):
        await SpeechPipelineOrchestrator(stages).process(audio)

    assert stages.calls == []


@pytest.mark.asyncio
async def test_malformed_base64_rejected():
    with pytest.raises(ValidationError):
        await SpeechPipelineOrchestrator(FakeStages()).process("data:audio/wav;base64,@@@")
