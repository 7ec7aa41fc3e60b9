"""
Session / recording controller for the voice widget.

Owns the widget state machine and sequences the collaborators:
- connect: fetch a credential, join the media session
- start_recording: publish a live microphone track, buffer the PCM
- stop_recording: tear down capture, send the buffered clip to the chat API
- disconnect: tear everything down from any state

Every request stamps the cooldown clock, so a new recording cannot start
within cooldown_seconds of the previous dispatch. Provider quota failures are
retried with a linearly increasing delay; every failure ends up as an
assistant message in the transcript.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from logging_setup import get_logger, Component
from voice_errors import (
    DeviceError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
)
from voice_pipeline.audio import pcm_to_wav, to_data_uri
from .api_client import ChatReply, TokenInfo, WidgetApiClient
from .devices import AudioCapture, AudioPlayer, MediaSession, Microphone, PublishedTrack
from .state import WidgetState, WidgetStateMachine
from .transcript import ChatTranscript, Role

logger = get_logger(Component.WIDGET)

EMPTY_AUDIO_DATA_URI = "data:audio/wav;base64,"

COOLDOWN_MESSAGE = "Please wait {seconds} seconds before sending another message."
RETRY_MESSAGE = "Rate limit reached. Retrying in {seconds} seconds... ({attempt}/{max_retries})"
RETRIES_EXHAUSTED_MESSAGE = "Too many requests! Please wait 30 seconds and try again."
RATE_LIMITED_MESSAGE = "Too many requests. Please wait {seconds} seconds and try again."
MICROPHONE_MESSAGE = "Failed to access microphone. Please check permissions."
ERROR_MESSAGE = "Error: {message}"


@dataclass
class RecordingSession:
    """One live recording: microphone capture, published track and PCM buffer."""

    sample_rate: int
    channels: int
    capture: Optional[AudioCapture] = None
    track: Optional[PublishedTrack] = None
    chunks: List[bytes] = field(default_factory=list)
    _queue: Optional[asyncio.Queue] = None
    _forwarder: Optional[asyncio.Task] = None

    def start_forwarding(self) -> None:
        """Push buffered chunks to the track in capture order."""
        if self.track is None:
            return
        self._queue = asyncio.Queue()
        self._forwarder = asyncio.create_task(self._forward(self.track, self._queue))

    @staticmethod
    async def _forward(track: PublishedTrack, queue: asyncio.Queue) -> None:
        while True:
            chunk = await queue.get()
            if chunk is None:
                return
            await track.push(chunk)

    def add_chunk(self, chunk: bytes) -> None:
        self.chunks.append(chunk)
        if self._queue is not None:
            self._queue.put_nowait(chunk)

    async def stop_forwarding(self) -> None:
        if self._queue is None or self._forwarder is None:
            return
        self._queue.put_nowait(None)
        forwarder, self._forwarder = self._forwarder, None
        await forwarder

    def audio_data_uri(self) -> str:
        pcm = b"".join(self.chunks)
        if not pcm:
            return EMPTY_AUDIO_DATA_URI
        return to_data_uri(pcm_to_wav(pcm, sample_rate=self.sample_rate, channels=self.channels))


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}"


class SessionController:
    """
    Drives one widget session.

    Usage:
        controller = SessionController(
            "lobby", "visitor_1",
            api=WidgetApiClient("http://localhost:8000"),
            media=LiveKitMediaSession(),
            microphone=SoundDeviceMicrophone(),
            player=SoundDevicePlayer(),
        )
        await controller.connect()
        await controller.start_recording()
        reply = await controller.stop_recording()
    """

    def __init__(
        self,
        room_name: str,
        participant_name: str,
        *,
        api: WidgetApiClient,
        media: MediaSession,
        microphone: Microphone,
        player: Optional[AudioPlayer] = None,
        transcript: Optional[ChatTranscript] = None,
        cooldown_seconds: float = 5.0,
        max_retries: int = 2,
        retry_delay_seconds: float = 3.0,
        now: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_error: Optional[Callable[[BaseException], None]] = None,
        on_cooldown_tick: Optional[Callable[[int], None]] = None,
    ):
        self.room_name = room_name
        self.participant_name = participant_name
        self.api = api
        self.media = media
        self.microphone = microphone
        self.player = player
        self.transcript = transcript if transcript is not None else ChatTranscript()
        self.cooldown_seconds = cooldown_seconds
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.on_error = on_error
        self.on_cooldown_tick = on_cooldown_tick
        self._now = now
        self._sleep = sleep
        self._log = logger.bind(room=room_name)

        self._machine = WidgetStateMachine()
        # Bumped on disconnect; work started under an older generation is discarded
        self._generation = 0
        self._recording: Optional[RecordingSession] = None
        self._credential: Optional[TokenInfo] = None
        self._cooldown_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None
        self.last_request_at: Optional[float] = None

    @property
    def state(self) -> WidgetState:
        return self._machine.state

    @property
    def state_machine(self) -> WidgetStateMachine:
        return self._machine

    @property
    def cooldown_remaining(self) -> int:
        """Whole seconds (rounded up) until a new request may be sent."""
        if self.last_request_at is None:
            return 0
        remaining = self.cooldown_seconds - (self._now() - self.last_request_at)
        return math.ceil(remaining) if remaining > 0 else 0

    # -- connection -------------------------------------------------------

    async def connect(self) -> None:
        """
        Fetch a credential and join the media session.

        On failure the controller returns to Disconnected, on_error is called
        and the error is re-raised.
        """
        if self.state is not WidgetState.DISCONNECTED:
            self._log.debug("Connect ignored", state=self.state.value)
            return

        self._machine.transition_to(WidgetState.CONNECTING)
        generation = self._generation
        try:
            credential = await self.api.fetch_token(self.room_name, self.participant_name)
            if not credential.token or not credential.url:
                raise ProviderError("Chat API returned no token or LiveKit URL.")
            await self.media.connect(
                credential.url,
                credential.token,
                on_disconnected=self._handle_media_disconnected,
            )
        except Exception as e:
            if generation == self._generation:
                self._machine.transition_to(WidgetState.DISCONNECTED)
            self._log.error("Connection failed", error=str(e), error_type=type(e).__name__)
            self._report_error(e)
            raise

        if generation != self._generation:
            # disconnect() was called while connecting
            await self.media.disconnect()
            return

        self._credential = credential
        self._machine.transition_to(WidgetState.IDLE)
        self._log.info("Connected", expires_in=credential.expires_in)

    async def disconnect(self) -> None:
        """Tear down everything. Valid from any state."""
        self._cancel_cooldown_ticker()
        if self.state is WidgetState.DISCONNECTED:
            return

        self._generation += 1
        session, self._recording = self._recording, None
        self._machine.transition_to(WidgetState.DISCONNECTED)
        self._credential = None

        if session is not None:
            await self._release(session)
        await self.media.disconnect()
        self._log.info("Disconnected")

    def _handle_media_disconnected(self) -> None:
        """The media server dropped the session."""
        if self.state is WidgetState.DISCONNECTED:
            return
        self._log.warning("Media session lost")
        self._cancel_cooldown_ticker()
        self._generation += 1
        session, self._recording = self._recording, None
        self._machine.transition_to(WidgetState.DISCONNECTED)
        self._credential = None
        if session is not None:
            self._teardown_task = asyncio.create_task(self._release(session))

    async def aclose(self) -> None:
        await self.disconnect()
        await self.api.aclose()

    # -- recording --------------------------------------------------------

    async def start_recording(self) -> bool:
        """
        Start a recording. Only valid while Idle.

        Returns False when refused (wrong state, cooldown, device failure).
        """
        if self.state is not WidgetState.IDLE:
            self._log.debug("Recording not started", state=self.state.value)
            return False

        remaining = self.cooldown_remaining
        if remaining > 0:
            self.transcript.append(COOLDOWN_MESSAGE.format(seconds=remaining), Role.ASSISTANT)
            return False

        generation = self._generation
        session = RecordingSession(
            sample_rate=self.microphone.sample_rate,
            channels=self.microphone.channels,
        )
        self._recording = session
        self._machine.transition_to(WidgetState.RECORDING)

        try:
            session.track = await self.media.publish_microphone(session.sample_rate, session.channels)
            session.start_forwarding()
            session.capture = await self.microphone.open(self._on_audio_chunk)
        except Exception as e:
            await self._release(session)
            if generation != self._generation:
                return False
            self._recording = None
            self._machine.transition_to(WidgetState.IDLE)
            if isinstance(e, DeviceError):
                self._log.error("Microphone access failed", error=e.message)
                self.transcript.append(MICROPHONE_MESSAGE, Role.ASSISTANT)
            else:
                self._log.error("Recording setup failed", error=str(e), error_type=type(e).__name__)
                self.transcript.append(ERROR_MESSAGE.format(message=_message_of(e)), Role.ASSISTANT)
            self._report_error(e)
            return False

        if generation != self._generation:
            await self._release(session)
            return False

        self._log.info("Recording started", sample_rate=session.sample_rate)
        return True

    def _on_audio_chunk(self, chunk: bytes) -> None:
        session = self._recording
        if session is None:
            return
        session.add_chunk(chunk)

    async def stop_recording(self) -> Optional[ChatReply]:
        """
        Stop the recording and send it through the speech pipeline.

        Returns the reply, or None when nothing was delivered.
        """
        session = self._recording
        if self.state is not WidgetState.RECORDING or session is None:
            self._log.debug("Stop ignored", state=self.state.value)
            return None

        self._recording = None
        self._stop_capture(session)
        audio_data_uri = session.audio_data_uri()

        generation = self._generation
        await self._release(session)
        if generation != self._generation:
            return None

        self._machine.transition_to(WidgetState.IDLE)
        self._machine.transition_to(WidgetState.THINKING)
        self._log.info("Recording stopped", pcm_bytes=sum(len(c) for c in session.chunks))
        try:
            return await self._dispatch(audio_data_uri, generation)
        finally:
            if generation == self._generation and self.state is WidgetState.THINKING:
                self._machine.transition_to(WidgetState.IDLE)

    def _stop_capture(self, session: RecordingSession) -> None:
        capture, session.capture = session.capture, None
        if capture is None:
            return
        try:
            capture.stop()
        except Exception as e:
            self._log.warning("Failed to stop microphone", error=str(e))

    async def _release(self, session: RecordingSession) -> None:
        """Release capture and track; failures are logged, not raised."""
        self._stop_capture(session)
        try:
            await session.stop_forwarding()
        except Exception as e:
            self._log.warning("Failed to forward audio to track", error=str(e))
        if session.track is not None:
            try:
                await session.track.unpublish()
            except Exception as e:
                self._log.warning("Failed to unpublish microphone track", error=str(e))

    # -- dispatch ---------------------------------------------------------

    async def _dispatch(self, audio_data_uri: str, generation: int) -> Optional[ChatReply]:
        attempt = 0
        while True:
            self.last_request_at = self._now()
            self._start_cooldown_ticker()
            try:
                reply = await self.api.send_audio(audio_data_uri)
            except QuotaExceededError as e:
                if generation != self._generation:
                    return None
                if attempt < self.max_retries:
                    attempt += 1
                    delay = self.retry_delay_seconds * attempt
                    self._log.warning("Provider quota exceeded, retrying", attempt=attempt, delay_s=delay)
                    self.transcript.append(
                        RETRY_MESSAGE.format(
                            seconds=_format_seconds(delay),
                            attempt=attempt,
                            max_retries=self.max_retries,
                        ),
                        Role.ASSISTANT,
                    )
                    await self._sleep(delay)
                    if generation != self._generation:
                        return None
                    continue
                self._log.error("Provider quota exceeded, giving up", attempts=attempt + 1)
                self.transcript.append(RETRIES_EXHAUSTED_MESSAGE, Role.ASSISTANT)
                self._report_error(e)
                return None
            except RateLimitError as e:
                if generation != self._generation:
                    return None
                self._log.warning("Chat API rate limit hit", retry_after=e.retry_after_seconds)
                self.transcript.append(
                    RATE_LIMITED_MESSAGE.format(seconds=e.retry_after_seconds),
                    Role.ASSISTANT,
                )
                self._report_error(e)
                return None
            except Exception as e:
                if generation != self._generation:
                    return None
                self._log.error("Chat request failed", error=str(e), error_type=type(e).__name__)
                self.transcript.append(ERROR_MESSAGE.format(message=_message_of(e)), Role.ASSISTANT)
                self._report_error(e)
                return None

            if generation != self._generation:
                self._log.debug("Dropping response that arrived after disconnect")
                return None

            if reply.transcription:
                self.transcript.append(reply.transcription, Role.USER)
            if reply.text:
                self.transcript.append(reply.text, Role.ASSISTANT)
            await self._play(reply)
            return reply

    async def _play(self, reply: ChatReply) -> None:
        if not reply.audio_data_uri or self.player is None:
            return
        try:
            await self.player.play(reply.audio_data_uri)
        except Exception as e:
            self._log.warning("Audio playback failed", error=str(e), error_type=type(e).__name__)
            self._report_error(e)

    # -- cooldown ticker --------------------------------------------------

    def _start_cooldown_ticker(self) -> None:
        if self.on_cooldown_tick is None:
            return
        self._cancel_cooldown_ticker()
        self._cooldown_task = asyncio.create_task(self._run_cooldown_ticker())

    async def _run_cooldown_ticker(self) -> None:
        while True:
            remaining = self.cooldown_remaining
            self.on_cooldown_tick(remaining)
            if remaining <= 0:
                return
            await asyncio.sleep(1)

    def _cancel_cooldown_ticker(self) -> None:
        task, self._cooldown_task = self._cooldown_task, None
        if task is not None and not task.done():
            task.cancel()

    def _report_error(self, error: BaseException) -> None:
        if self.on_error is not None:
            self.on_error(error)


def _message_of(error: BaseException) -> str:
    return getattr(error, "message", None) or str(error) or type(error).__name__
