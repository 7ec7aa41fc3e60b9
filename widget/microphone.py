"""
Microphone capture via sounddevice.

PortAudio invokes the stream callback on its own thread; chunks are handed to
the event loop with call_soon_threadsafe.
"""
import asyncio
from typing import Callable

import sounddevice as sd

from logging_setup import get_logger, Component
from voice_errors import DeviceError

logger = get_logger(Component.MICROPHONE)


class SoundDeviceCapture:
    def __init__(self, stream: sd.RawInputStream):
        self._stream = stream

    def stop(self) -> None:
        """Stop and close the stream. Safe to call twice."""
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        try:
            stream.stop()
        finally:
            stream.close()


class SoundDeviceMicrophone:
    """16 kHz mono int16 microphone input."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1, blocksize: int = 1600, device=None):
        self.sample_rate = sample_rate
        self.channels = channels
        self.blocksize = blocksize
        self.device = device

    async def open(self, on_chunk: Callable[[bytes], None]) -> SoundDeviceCapture:
        loop = asyncio.get_running_loop()

        def callback(indata, frames, time_info, status):
            if status:
                logger.debug("Input stream status", status=str(status))
            loop.call_soon_threadsafe(on_chunk, bytes(indata))

        try:
            stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=self.blocksize,
                device=self.device,
                callback=callback,
            )
            stream.start()
        except sd.PortAudioError as e:
            logger.error("Microphone unavailable", error=str(e))
            raise DeviceError(f"Microphone unavailable: {e}") from e

        logger.info("Microphone opened", sample_rate=self.sample_rate, channels=self.channels)
        return SoundDeviceCapture(stream)
