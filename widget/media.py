"""
LiveKit media session for the widget.

Joins the room with the issued credential and publishes the microphone as a
live audio track while the visitor records.
"""
from typing import Callable, Optional

from livekit import rtc

from logging_setup import get_logger, Component

logger = get_logger(Component.LIVEKIT_TRANSPORT)

SAMPLE_WIDTH = 2  # int16


class LiveKitMicrophoneTrack:
    """Local audio track fed from raw PCM chunks."""

    def __init__(
        self,
        room: rtc.Room,
        source: rtc.AudioSource,
        track: rtc.LocalAudioTrack,
        publication: rtc.LocalTrackPublication,
        sample_rate: int,
        channels: int,
    ):
        self._room = room
        self._source = source
        self._track = track
        self._publication = publication
        self.sample_rate = sample_rate
        self.channels = channels

    async def push(self, pcm: bytes) -> None:
        samples_per_channel = len(pcm) // (SAMPLE_WIDTH * self.channels)
        if samples_per_channel == 0:
            return
        frame = rtc.AudioFrame(
            data=pcm[: samples_per_channel * SAMPLE_WIDTH * self.channels],
            sample_rate=self.sample_rate,
            num_channels=self.channels,
            samples_per_channel=samples_per_channel,
        )
        await self._source.capture_frame(frame)

    async def unpublish(self) -> None:
        try:
            await self._room.local_participant.unpublish_track(self._publication.sid)
        finally:
            await self._source.aclose()
        logger.debug("Microphone track unpublished", track_sid=self._publication.sid)


class LiveKitMediaSession:
    """Wraps one rtc.Room connection."""

    def __init__(self):
        self._room: Optional[rtc.Room] = None

    @property
    def connected(self) -> bool:
        return self._room is not None and self._room.isconnected()

    async def connect(
        self,
        url: str,
        token: str,
        on_disconnected: Optional[Callable[[], None]] = None,
    ) -> None:
        room = rtc.Room()
        if on_disconnected is not None:
            room.on("disconnected", lambda *args: on_disconnected())
        await room.connect(url, token, options=rtc.RoomOptions(auto_subscribe=True))
        self._room = room
        logger.info("Joined LiveKit room", room=room.name, url=url)

    async def publish_microphone(self, sample_rate: int, channels: int) -> LiveKitMicrophoneTrack:
        if self._room is None:
            raise RuntimeError("Media session is not connected")

        source = rtc.AudioSource(sample_rate, channels)
        track = rtc.LocalAudioTrack.create_audio_track("microphone", source)
        options = rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_MICROPHONE)
        publication = await self._room.local_participant.publish_track(track, options)
        logger.debug("Microphone track published", track_sid=publication.sid)
        return LiveKitMicrophoneTrack(self._room, source, track, publication, sample_rate, channels)

    async def disconnect(self) -> None:
        """Leave the room. Safe to call when not connected."""
        room, self._room = self._room, None
        if room is not None:
            await room.disconnect()
            logger.info("Left LiveKit room")
