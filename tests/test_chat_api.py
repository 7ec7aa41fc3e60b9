"""
Tests for the chat API (POST /api/chat).

Verifies:
- Pipeline response shape and rate limit headers
- Per-client rate limiting (11th request in a window -> 429)
- Degraded (text-only) responses
- Error mapping: validation, provider quota, network, unexpected
"""
import pytest
from fastapi.testclient import TestClient

from chat_api import routes
from chat_api.rate_limiter import FixedWindowRateLimiter
from chat_api.server import app
from voice_errors import ProviderError, QuotaExceededError, TransientNetworkError
from voice_pipeline.audio import to_data_uri
from voice_pipeline.orchestrator import SpeechPipelineOrchestrator

AUDIO = to_data_uri(b"RIFF....WAVE", "audio/wav")
REPLY_AUDIO = "data:audio/wav;base64,UklGRg=="


class StubStages:
    def __init__(self, transcription="hello", reply="Hi there!", audio=REPLY_AUDIO):
        self.values = {"transcribe": transcription, "generate": reply, "synthesize": audio}

    def _answer(self, name):
        value = self.values[name]
        if isinstance(value, Exception):
            raise value
        return value

    async def transcribe(self, audio_data_uri):
        return self._answer("transcribe")

    async def generate_response(self, transcription):
        return self._answer("generate")

    async def synthesize_speech(self, text):
        return self._answer("synthesize")


@pytest.fixture(autouse=True)
def fresh_limiters(monkeypatch):
    monkeypatch.setattr(routes, "chat_limiter", FixedWindowRateLimiter(10, 60, name="chat"))
    monkeypatch.setattr(routes, "token_limiter", FixedWindowRateLimiter(20, 60, name="token"))
    monkeypatch.delenv("ASSISTANT_SCENARIO", raising=False)


@pytest.fixture
def use_stages():
    def install(stages):
        app.dependency_overrides[routes.get_orchestrator] = lambda: SpeechPipelineOrchestrator(stages)

    yield install
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


def test_chat_success(client, use_stages):
    use_stages(StubStages())

    response = client.post("/api/chat", json={"audioDataUri": AUDIO})

    assert response.status_code == 200
    assert response.json() == {
        "transcription": "hello",
        "aiResponse": {"text": "Hi there!", "audioDataUri": REPLY_AUDIO},
    }
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"
    assert "X-RateLimit-Reset" in response.headers


def test_eleventh_request_rate_limited(client, use_stages):
    use_stages(StubStages())

    for _ in range(10):
        assert client.post("/api/chat", json={"audioDataUri": AUDIO}).status_code == 200

    response = client.post("/api/chat", json={"audioDataUri": AUDIO})

    assert response.status_code == 429
    body = response.json()
    assert body["rateLimitExceeded"] is True
    assert 0 < body["retryAfter"] <= 60
    assert body["error"] == (
        f"Rate limit exceeded. Please wait {body['retryAfter']} seconds before trying again."
    )
    assert response.headers["Retry-After"] == str(body["retryAfter"])
    assert response.headers["X-RateLimit-Remaining"] == "0"


def test_rate_limit_is_per_client(client, use_stages):
    use_stages(StubStages())

    for _ in range(10):
        client.post("/api/chat", json={"audioDataUri": AUDIO}, headers={"X-Forwarded-For": "203.0.113.1"})

    blocked = client.post("/api/chat", json={"audioDataUri": AUDIO}, headers={"X-Forwarded-For": "203.0.113.1"})
    other = client.post("/api/chat", json={"audioDataUri": AUDIO}, headers={"X-Forwarded-For": "203.0.113.2"})

    assert blocked.status_code == 429
    assert other.status_code == 200


def test_rate_limit_checked_before_body(client, use_stages):
    use_stages(StubStages())
    for _ in range(10):
        client.post("/api/chat", json={})

    response = client.post("/api/chat", content=b"not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 429


def test_degraded_tts_is_success(client, use_stages):
    use_stages(StubStages(audio=ProviderError("no media returned")))

    response = client.post("/api/chat", json={"audioDataUri": AUDIO})

    assert response.status_code == 200
    assert response.json()["aiResponse"] == {"text": "Hi there!", "audioDataUri": ""}


def test_silence(client, use_stages):
    use_stages(StubStages(transcription=""))

    response = client.post("/api/chat", json={"audioDataUri": AUDIO})

    assert response.status_code == 200
    assert response.json() == {
        "transcription": "",
        "aiResponse": {
            "text": "Sorry, I couldn't understand that. Please try again.",
            "audioDataUri": "",
        },
    }


@pytest.mark.parametrize(
    "payload, message",
    [
        ({}, "Missing audioDataUri"),
        ({"audioDataUri": ""}, "Missing audioDataUri"),
        ({"audioDataUri": "data:text/plain;base64,aGk="}, "Invalid audio data format"),
    ],
)
def test_invalid_input(client, use_stages, payload, message):
    use_stages(StubStages())

    response = client.post("/api/chat", json=payload)

    assert response.status_code == 400
    assert response.json()["error"] == message
    assert "timestamp" in response.json()


def test_malformed_json(client, use_stages):
    use_stages(StubStages())

    response = client.post("/api/chat", content=b"{oops", headers={"Content-Type": "application/json"})

    assert response.status_code == 400


def test_generation_quota(client, use_stages):
    use_stages(StubStages(reply=QuotaExceededError("quota", retry_after=12)))

    response = client.post("/api/chat", json={"audioDataUri": AUDIO})

    assert response.status_code == 429
    body = response.json()
    assert body["quotaExceeded"] is True
    assert body["error"] == "AI service is busy. Please try again shortly."
    assert body["retryAfter"] == 12
    assert response.headers["Retry-After"] == "12"
    assert "rateLimitExceeded" not in body


def test_quota_message_leaves_error_untouched(client, use_stages):
    error = QuotaExceededError("Gemini quota exceeded: per-minute limit")
    use_stages(StubStages(reply=error))

    response = client.post("/api/chat", json={"audioDataUri": AUDIO})

    assert response.json()["error"] == "AI service is busy. Please try again shortly."
    assert error.message == "Gemini quota exceeded: per-minute limit"


def test_transcription_quota(client, use_stages):
    use_stages(StubStages(transcription=QuotaExceededError("quota")))

    response = client.post("/api/chat", json={"audioDataUri": AUDIO})

    assert response.status_code == 429
    body = response.json()
    assert body["quotaExceeded"] is True
    assert body["error"] == "AI service quota exceeded. Please try again in a few moments."
    assert "retryAfter" not in body


def test_network_failure(client, use_stages):
    use_stages(StubStages(transcription=TransientNetworkError("connect failed")))

    response = client.post("/api/chat", json={"audioDataUri": AUDIO})

    assert response.status_code == 503
    assert response.json()["error"] == "Service temporarily unavailable."


def test_network_failure_hides_provider_text(client, use_stages):
    use_stages(StubStages(transcription=TransientNetworkError(
        "Gemini network error (gemini-2.5-flash): Cannot connect to host generativelanguage.googleapis.com"
    )))

    response = client.post("/api/chat", json={"audioDataUri": AUDIO})

    assert response.status_code == 503
    assert "googleapis" not in response.json()["error"]


def test_provider_timeout(client, use_stages):
    use_stages(StubStages(reply=TransientNetworkError("slow", timeout=True)))

    response = client.post("/api/chat", json={"audioDataUri": AUDIO})

    assert response.status_code == 504
    assert response.json()["error"] == "Request timeout. Please try again."


def test_unexpected_failure(client, use_stages):
    use_stages(StubStages(transcription=RuntimeError("boom")))

    response = client.post("/api/chat", json={"audioDataUri": AUDIO})

    assert response.status_code == 500
    assert response.json()["error"] == "Internal Server Error"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "component": "chat_api"}
