"""
Reply audio playback via sounddevice.
"""
import asyncio
from typing import Optional

import sounddevice as sd

from logging_setup import get_logger, Component
from voice_errors import DeviceError
from voice_pipeline.audio import parse_data_uri, wav_to_pcm

logger = get_logger(Component.WIDGET)


class SoundDevicePlayer:
    """
    Plays WAV data URIs on the default output device.

    play() returns once the output stream has started; the samples are
    written from a worker thread. A new play() cuts off the previous clip.
    """

    def __init__(self, device=None):
        self.device = device
        self._stream: Optional[sd.RawOutputStream] = None
        self._task: Optional[asyncio.Future] = None

    async def play(self, audio_data_uri: str) -> None:
        _, data = parse_data_uri(audio_data_uri)
        if not data:
            return
        pcm, sample_rate, channels, sample_width = wav_to_pcm(data)
        if sample_width != 2:
            raise DeviceError(f"Unsupported sample width: {sample_width}")

        self.stop()
        try:
            stream = sd.RawOutputStream(
                samplerate=sample_rate,
                channels=channels,
                dtype="int16",
                device=self.device,
            )
            stream.start()
        except sd.PortAudioError as e:
            raise DeviceError(f"Audio output unavailable: {e}") from e

        self._stream = stream
        loop = asyncio.get_running_loop()
        self._task = loop.run_in_executor(None, self._drain, stream, pcm)
        logger.debug("Playback started", sample_rate=sample_rate, pcm_bytes=len(pcm))

    def _drain(self, stream: sd.RawOutputStream, pcm: bytes) -> None:
        try:
            stream.write(pcm)
        except sd.PortAudioError as e:
            # stop() aborts the stream from another thread
            logger.debug("Playback interrupted", error=str(e))
        finally:
            stream.close()

    def stop(self) -> None:
        """Abort the clip currently playing, if any."""
        stream, self._stream = self._stream, None
        if stream is not None and stream.active:
            stream.abort()
