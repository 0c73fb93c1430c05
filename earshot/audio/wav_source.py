"""Replay a WAV file as a stream of frames."""

import time
import wave
import logging
from typing import Callable, Iterator, Optional

from ..errors import InvalidAudioFormatError
from ..models.audio import AudioFrame, BYTES_PER_SAMPLE

logger = logging.getLogger(__name__)


class WavFileSource:
    """Reads 16-bit mono WAV audio and yields fixed-size AudioFrames.

    The last partial frame is dropped so every frame has the same size.
    """

    def __init__(self, path: str, sample_rate: int = 16000, frame_size: int = 320):
        self.path = path
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self.total_frames = 0

    def frames(self) -> Iterator[AudioFrame]:
        try:
            wf = wave.open(self.path, "rb")
        except (wave.Error, EOFError) as e:
            raise InvalidAudioFormatError(f"{self.path}: {e}") from e

        with wf:
            if wf.getsampwidth() != BYTES_PER_SAMPLE:
                raise InvalidAudioFormatError(
                    f"{self.path}: expected 16-bit samples, got {wf.getsampwidth() * 8}-bit")
            if wf.getnchannels() != 1:
                raise InvalidAudioFormatError(
                    f"{self.path}: expected mono audio, got {wf.getnchannels()} channels")
            if wf.getframerate() != self.sample_rate:
                raise InvalidAudioFormatError(
                    f"{self.path}: expected {self.sample_rate}Hz, got {wf.getframerate()}Hz")

            logger.info(f"Replaying {self.path}: {wf.getnframes() / self.sample_rate:.1f}s")
            frame_bytes = self.frame_size * BYTES_PER_SAMPLE
            while True:
                data = wf.readframes(self.frame_size)
                if len(data) < frame_bytes:
                    break
                self.total_frames += 1
                yield AudioFrame(
                    data=data,
                    sample_rate=self.sample_rate,
                    sequence_number=self.total_frames,
                    timestamp=time.time(),
                )

    def replay(self, callback: Callable[[AudioFrame], None], realtime: bool = False,
               max_seconds: Optional[float] = None) -> int:
        """Push every frame into ``callback``; returns the number of frames sent."""
        sent = 0
        frame_seconds = self.frame_size / self.sample_rate
        max_frames = None if max_seconds is None else int(round(max_seconds / frame_seconds))
        for frame in self.frames():
            if max_frames is not None and sent >= max_frames:
                break
            callback(frame)
            sent += 1
            if realtime:
                time.sleep(frame_seconds)
        return sent
