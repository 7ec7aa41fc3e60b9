"""
Interfaces of the media collaborators the session controller drives.

Concrete implementations live in widget.media (LiveKit), widget.microphone and
widget.playback (sounddevice); tests substitute fakes.
"""
from typing import Callable, Optional, Protocol


class AudioCapture(Protocol):
    """A running microphone capture."""

    def stop(self) -> None: ...


class Microphone(Protocol):
    """Opens a capture delivering raw 16-bit PCM chunks on the event loop thread."""

    sample_rate: int
    channels: int

    async def open(self, on_chunk: Callable[[bytes], None]) -> AudioCapture: ...


class PublishedTrack(Protocol):
    """A live local audio track in the media session."""

    async def push(self, pcm: bytes) -> None: ...

    async def unpublish(self) -> None: ...


class MediaSession(Protocol):
    """Real-time media session (a LiveKit room)."""

    async def connect(
        self,
        url: str,
        token: str,
        on_disconnected: Optional[Callable[[], None]] = None,
    ) -> None: ...

    async def publish_microphone(self, sample_rate: int, channels: int) -> PublishedTrack: ...

    async def disconnect(self) -> None: ...


class AudioPlayer(Protocol):
    """Plays a WAV data URI; returns once playback has started."""

    async def play(self, audio_data_uri: str) -> None: ...
