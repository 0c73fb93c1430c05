"""Linear PCM helpers shared by the detector, sources and provider adapters."""

import io
import wave

import numpy as np

from ..errors import InvalidAudioFormatError
from ..models.audio import BYTES_PER_SAMPLE


def pcm16_to_array(pcm16: bytes) -> np.ndarray:
    """View little-endian int16 PCM bytes as a numpy array."""
    if len(pcm16) % BYTES_PER_SAMPLE:
        raise InvalidAudioFormatError(
            f"PCM16 buffer has odd length ({len(pcm16)} bytes)")
    return np.frombuffer(pcm16, dtype="<i2")


def pcm16_rms(pcm16: bytes) -> float:
    """Return RMS energy for little-endian int16 PCM bytes."""
    samples = pcm16_to_array(pcm16)
    if samples.size == 0:
        return 0.0
    as_float = samples.astype(np.float64)
    return float(np.sqrt(np.mean(as_float * as_float)))


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert float samples in [-1, 1] to int16 PCM bytes, clipping overflow."""
    clipped = np.clip(samples, -1.0, 1.0)
    return (clipped * 32767).astype("<i2").tobytes()


def pcm16_to_wav(pcm16: bytes, sample_rate: int, channels: int = 1) -> bytes:
    """Wrap raw PCM16 in a WAV container so it can be uploaded as a file."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(BYTES_PER_SAMPLE)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm16)
    return buffer.getvalue()


def pcm16_duration_seconds(pcm16: bytes, sample_rate: int, channels: int = 1) -> float:
    bytes_per_second = sample_rate * channels * BYTES_PER_SAMPLE
    if bytes_per_second <= 0:
        return 0.0
    return len(pcm16) / bytes_per_second
