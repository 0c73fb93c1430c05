"""Audio-related data models."""

from dataclasses import dataclass
from typing import Tuple


BYTES_PER_SAMPLE = 2  # 16-bit linear PCM


@dataclass
class AudioStats:
    """Audio capture statistics."""
    is_recording: bool
    duration_seconds: float
    sample_rate: int
    frame_size: int
    total_frames: int


@dataclass(frozen=True)
class AudioFrame:
    """A fixed-size buffer of signed 16-bit little-endian mono PCM."""
    data: bytes
    sample_rate: int = 16000
    sequence_number: int = 0
    timestamp: float = 0.0  # Time when this frame was captured
    streaming: bool = False  # True when forwarded without segmentation

    @property
    def sample_count(self) -> int:
        return len(self.data) // BYTES_PER_SAMPLE

    @property
    def duration_ms(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.sample_count * 1000.0 / self.sample_rate


@dataclass(frozen=True)
class AudioSegment:
    """One committed utterance: an ordered run of frames plus metadata.

    Created by the segmentation engine on commit and never mutated afterwards.
    """
    frames: Tuple[AudioFrame, ...]
    sample_rate: int
    duration_ms: float
    frame_count: int
    captured_at: float

    @property
    def pcm(self) -> bytes:
        """Concatenated PCM bytes of every frame in capture order."""
        return b"".join(frame.data for frame in self.frames)

    @property
    def duration_seconds(self) -> float:
        return self.duration_ms / 1000.0

    @property
    def first_sequence_number(self) -> int:
        return self.frames[0].sequence_number if self.frames else -1

    @property
    def last_sequence_number(self) -> int:
        return self.frames[-1].sequence_number if self.frames else -1
