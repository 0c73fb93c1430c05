"""Pytest configuration and fixtures for Earshot tests."""

import pytest
import tempfile
import logging
import wave
from pathlib import Path
from typing import List, Optional

import numpy as np

from earshot.models.audio import AudioFrame, AudioSegment
from earshot.models.dispatch import ProviderKind
from earshot.providers.base import AbstractProvider, ProviderResponse


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
FRAME_SIZE = 320  # 20ms at 16kHz


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without I/O")
    config.addinivalue_line("markers", "integration: tests wiring several components")


def generate_audio(pattern: str = "sine", samples: int = FRAME_SIZE,
                   sample_rate: int = SAMPLE_RATE, amplitude: float = 0.5) -> bytes:
    """Generate 16-bit PCM test audio.

    Args:
        pattern: Type of audio pattern ('sine', 'noise', 'silence')
        samples: Number of samples
        sample_rate: Sample rate in Hz
        amplitude: Peak level in [0, 1]

    Returns:
        bytes: Audio data as bytes
    """
    if pattern == "sine":
        t = np.arange(samples) / sample_rate
        wave_data = amplitude * np.sin(2 * np.pi * 440 * t)
    elif pattern == "noise":
        wave_data = amplitude * np.random.uniform(-1, 1, samples)
    elif pattern == "silence":
        wave_data = np.zeros(samples)
    else:
        raise ValueError(f"Unknown pattern: {pattern}")

    return (wave_data * 32767).astype("<i2").tobytes()


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def audio_test_data():
    return generate_audio


@pytest.fixture
def frame_sequence():
    """Build a list of frames from (pattern, count) pairs with running sequence numbers."""
    def build(*runs) -> List[AudioFrame]:
        frames = []
        for pattern, count in runs:
            data = generate_audio("sine" if pattern == "voice" else pattern)
            for _ in range(count):
                frames.append(AudioFrame(data=data, sample_rate=SAMPLE_RATE,
                                         sequence_number=len(frames) + 1,
                                         timestamp=len(frames) * 0.02))
        return frames

    return build


@pytest.fixture
def make_segment(frame_sequence):
    """Build an AudioSegment of `voice_frames` tone frames."""
    def build(voice_frames: int = 20) -> AudioSegment:
        frames = tuple(frame_sequence(("voice", voice_frames)))
        return AudioSegment(frames=frames, sample_rate=SAMPLE_RATE,
                            duration_ms=voice_frames * 20.0, frame_count=voice_frames,
                            captured_at=0.0)

    return build


@pytest.fixture
def sample_wav_file(temp_data_dir):
    """Create a WAV file: 0.2s silence, 0.4s tone, 0.6s silence."""
    file_path = Path(temp_data_dir) / "question.wav"
    with wave.open(str(file_path), 'wb') as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(SAMPLE_RATE)
        wf.writeframes(generate_audio("silence", samples=3200))
        wf.writeframes(generate_audio("sine", samples=6400))
        wf.writeframes(generate_audio("silence", samples=9600))
    return str(file_path)


class FakeProvider(AbstractProvider):
    """In-memory provider producing each backend's native chunk shape."""

    def __init__(self, kind: ProviderKind, replies=("Hello", " world"),
                 error: Optional[Exception] = None, transcription: str = "what is python",
                 tokens: int = 10):
        super().__init__(api_key="test-key")
        self.kind = kind
        self.replies = list(replies)
        self.error = error
        self.transcription = transcription
        self.tokens = tokens
        self.calls = []

    @property
    def supports_vision(self) -> bool:
        return True

    @property
    def supports_streaming(self) -> bool:
        return self.kind == ProviderKind.GROQ

    async def _chunks(self):
        for reply in self.replies:
            if self.kind == ProviderKind.GROQ:
                yield {"choices": [{"delta": {"content": reply}}]}
            else:
                yield {"candidates": [{"content": {"parts": [{"text": reply}]}}]}

    def _respond(self, method: str, model: str) -> ProviderResponse:
        self.calls.append((method, model))
        if self.error is not None:
            raise self.error
        return ProviderResponse(chunks=self._chunks(), tokens=self.tokens)

    async def generate_text(self, model, prompt, system_prompt="", options=None):
        return self._respond("generate_text", model)

    async def analyze_image(self, model, image_base64, prompt, system_prompt="", options=None):
        return self._respond("analyze_image", model)

    async def process_audio(self, model, segment, prompt, system_prompt="", options=None):
        response = self._respond("process_audio", model)
        response.transcription = self.transcription
        response.audio_seconds = segment.duration_seconds
        return response

    async def validate_api_key(self) -> bool:
        return True


@pytest.fixture
def fake_provider_factory():
    return FakeProvider
