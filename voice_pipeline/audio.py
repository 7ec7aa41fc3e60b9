"""
Audio container helpers.

Raw PCM is wrapped into WAV (16-bit little-endian) and carried as base64
data URIs between the widget, the chat API and the AI provider.
"""
import base64
import binascii
import io
import re
import wave
from typing import Tuple

from voice_errors import ValidationError

AUDIO_DATA_URI_PREFIX = "data:audio/"

_RATE_RE = re.compile(r"rate=(\d+)")


def pcm_to_wav(pcm: bytes, sample_rate: int = 24000, channels: int = 1, sample_width: int = 2) -> bytes:
    """Wrap raw PCM frames into a WAV container."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(sample_width)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buf.getvalue()


def wav_to_pcm(data: bytes) -> Tuple[bytes, int, int, int]:
    """
    Unwrap a WAV container.

    Returns (pcm, sample_rate, channels, sample_width).
    """
    with wave.open(io.BytesIO(data), "rb") as wav:
        return (
            wav.readframes(wav.getnframes()),
            wav.getframerate(),
            wav.getnchannels(),
            wav.getsampwidth(),
        )


def to_data_uri(data: bytes, mime_type: str = "audio/wav") -> str:
    return f"data:{mime_type};base64," + base64.b64encode(data).decode("ascii")


def parse_data_uri(uri: str) -> Tuple[str, bytes]:
    """
    Split a base64 data URI into (mime_type, payload).

    Raises ValidationError for anything that is not data:<mime>;base64,<data>.
    """
    if not isinstance(uri, str) or not uri.startswith("data:") or "," not in uri:
        raise ValidationError("Invalid data URI")

    header, _, encoded = uri.partition(",")
    parts = header[len("data:"):].split(";")
    if "base64" not in parts[1:]:
        raise ValidationError("Data URI must be base64 encoded")

    try:
        payload = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Data URI payload is not valid base64") from e

    return parts[0], payload


def pcm_rate_from_mime(mime_type: str, default: int = 24000) -> int:
    """Sample rate from e.g. "audio/L16;codec=pcm;rate=24000"."""
    match = _RATE_RE.search(mime_type or "")
    return int(match.group(1)) if match else default
