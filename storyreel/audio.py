"""Audio payload helpers: duration estimation, format sniffing and PCM wrapping."""
from __future__ import annotations

import base64
import io
import logging
import struct
import wave
from pathlib import Path

_logger = logging.getLogger(__name__)

MP3_DATA_URI_PREFIX = "data:audio/mpeg;base64,"
WAV_DATA_URI_PREFIX = "data:audio/wav;base64,"

MP3_BYTES_PER_SECOND = (128 * 1000) / 8
WAV_BYTES_PER_SECOND = 48000

PLACEHOLDER_WAV_BASE64 = "UklGRiQAAABXQVZFZm10IBAAAAABAAEAQB8AAEAfAAABAAgAZGF0YQAAAAAA"
PLACEHOLDER_WAV_DATA_URI = WAV_DATA_URI_PREFIX + PLACEHOLDER_WAV_BASE64

UNSUPPORTED_FORMAT_FALLBACK_SEC = 30.0
MIN_DURATION_SEC = 1.0


def estimate_duration_from_data_uri(data_uri: str) -> float:
    """Approximate the duration of a base64 audio data URI from its byte length.

    This is a constant-bitrate estimate, not a decode: MP3 is assumed to be
    128 kbps and WAV 48000 bytes/s. Never raises.
    """
    try:
        if data_uri.startswith(MP3_DATA_URI_PREFIX):
            payload = data_uri[len(MP3_DATA_URI_PREFIX):]
            bytes_per_second = MP3_BYTES_PER_SECOND
        elif data_uri.startswith(WAV_DATA_URI_PREFIX):
            payload = data_uri[len(WAV_DATA_URI_PREFIX):]
            bytes_per_second = WAV_BYTES_PER_SECOND
        else:
            _logger.warning("Cannot estimate duration: unsupported audio format in data URI.")
            return UNSUPPORTED_FORMAT_FALLBACK_SEC

        if payload == PLACEHOLDER_WAV_BASE64:
            _logger.warning("Placeholder WAV audio detected, using %.0fs.", MIN_DURATION_SEC)
            return MIN_DURATION_SEC

        binary = base64.b64decode(payload)
        if len(binary) < 1000:
            _logger.warning("Very short audio payload (%d bytes), using %.0fs.", len(binary), MIN_DURATION_SEC)
            return MIN_DURATION_SEC

        return max(MIN_DURATION_SEC, round(len(binary) / bytes_per_second, 2))
    except Exception:
        _logger.exception("Error estimating audio duration; falling back to %.0fs.", UNSUPPORTED_FORMAT_FALLBACK_SEC)
        return UNSUPPORTED_FORMAT_FALLBACK_SEC


def decode_data_uri(data_uri: str) -> tuple[str, bytes] | None:
    if not data_uri.startswith("data:") or ";base64," not in data_uri:
        return None
    header, payload = data_uri.split(";base64,", maxsplit=1)
    try:
        return header[len("data:"):], base64.b64decode(payload)
    except ValueError:
        return None


def sniff_audio_format(data: bytes) -> str | None:
    if len(data) >= 4 and data[:4] == b"RIFF":
        return "wav"
    if len(data) >= 3 and data[:3] == b"ID3":
        return "mp3"
    if len(data) >= 2 and data[0] == 0xFF and (data[1] & 0xE0) == 0xE0:
        return "mp3"
    return None


def wav_duration_seconds(data: bytes) -> float | None:
    """Read the real duration from a RIFF/WAVE header, or None if it cannot be parsed."""
    try:
        with wave.open(io.BytesIO(data), "rb") as handle:
            rate = handle.getframerate()
            if rate <= 0:
                return None
            return handle.getnframes() / float(rate)
    except (wave.Error, EOFError, struct.error):
        return None


def wrap_pcm_as_wav(pcm: bytes, sample_rate: int = 24000, channels: int = 1, sample_width: int = 2) -> bytes:
    """Add a WAV header to raw PCM (TTS providers return 24kHz 16-bit mono)."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as handle:
        handle.setnchannels(channels)
        handle.setsampwidth(sample_width)
        handle.setframerate(sample_rate)
        handle.writeframes(pcm)
    return buf.getvalue()


def probe_audio_duration(path: str | Path) -> float | None:
    """Decode-based duration for a local file: WAV header first, ffprobe second."""
    audio_path = Path(path)
    if not audio_path.exists():
        return None
    if audio_path.suffix.lower() == ".wav":
        duration = wav_duration_seconds(audio_path.read_bytes())
        if duration:
            return duration

    from storyreel.video.utils import get_media_duration

    duration = get_media_duration(audio_path)
    return duration if duration > 0 else None
