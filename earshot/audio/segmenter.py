"""Speech segmentation engine: turns a continuous frame stream into utterances.

Automatic mode::

    IDLE -> LISTENING <-> RECORDING -> COMMITTING -> LISTENING

Manual mode (push-to-talk)::

    PAUSED <-> RECORDING -> COMMITTING -> PAUSED

All timing decisions use audio time (the summed duration of the frames seen),
so a given frame sequence always produces the same segments.
"""

import time
import logging
import threading
import dataclasses
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from ..models.audio import AudioFrame, AudioSegment
from .detector import DetectorConfig, EnergyVoiceDetector

logger = logging.getLogger(__name__)


class SegmenterState(Enum):
    IDLE = "IDLE"              # Engine not started (or stopped)
    LISTENING = "LISTENING"    # Waiting for speech to start
    RECORDING = "RECORDING"    # Accumulating an utterance
    COMMITTING = "COMMITTING"  # Handing a finished utterance downstream
    PAUSED = "PAUSED"          # Explicitly muted by the user


class SegmentationMode(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


@dataclass
class SegmenterConfig:
    """Segmentation tuning. Defaults are starting points, not requirements."""
    mode: SegmentationMode = SegmentationMode.AUTOMATIC
    streaming: bool = False            # Forward every frame instead of segmenting
    sample_rate: int = 16000
    pre_roll_frames: int = 5           # Frames kept from before speech onset
    post_roll_frames: int = 2          # Trailing silence frames kept after speech
    min_speech_frames: int = 3         # Consecutive voice frames to start recording
    silence_frames: int = 1            # Consecutive silence frames to arm the silence timer
    silence_threshold_ms: float = 200.0
    min_recording_ms: float = 200.0
    max_recording_ms: float = 20000.0
    detector: DetectorConfig = field(default_factory=DetectorConfig)


class SpeechSegmenter:
    """Voice-activity state machine emitting one AudioSegment per utterance."""

    def __init__(self,
                 on_commit: Callable[[AudioSegment], None],
                 config: Optional[SegmenterConfig] = None,
                 on_frame: Optional[Callable[[AudioFrame], None]] = None,
                 on_state_change: Optional[Callable[[SegmenterState, SegmenterState], None]] = None,
                 detector: Optional[EnergyVoiceDetector] = None,
                 clock: Callable[[], float] = time.time):
        """Initialize the segmenter.

        Args:
            on_commit: Called exactly once per committed utterance
            config: Segmentation settings
            on_frame: Receives frames tagged ``streaming=True`` in streaming mode
            on_state_change: Optional observer called with (new_state, old_state)
            detector: Voice detector; built from ``config.detector`` when omitted
            clock: Wall clock used only to stamp ``captured_at``
        """
        self.on_commit = on_commit
        self.on_frame = on_frame
        self.on_state_change = on_state_change
        self.config = config or SegmenterConfig()
        self.detector = detector or EnergyVoiceDetector(self.config.detector)
        self.clock = clock

        self.state = SegmenterState.IDLE
        self.lock = threading.RLock()

        self._pre_roll = deque(maxlen=self.config.pre_roll_frames)
        self._candidate: List[AudioFrame] = []
        self._reset_recording_buffers()

        # Statistics
        self.frames_processed = 0
        self.frames_skipped = 0
        self.commits = 0
        self.discards = 0

        if self.config.streaming and on_frame is None:
            raise ValueError("Streaming mode requires an on_frame callback")

        logger.info(f"SpeechSegmenter initialized: mode={self.config.mode.value}, "
                    f"streaming={self.config.streaming}, "
                    f"silence={self.config.silence_threshold_ms}ms, "
                    f"min={self.config.min_recording_ms}ms, max={self.config.max_recording_ms}ms")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Leave IDLE: start listening (automatic) or wait muted (manual)."""
        with self.lock:
            if self.state != SegmenterState.IDLE:
                logger.warning(f"start() ignored in state {self.state.value}")
                return
            if self.config.mode == SegmentationMode.MANUAL:
                self._set_state(SegmenterState.PAUSED)
            else:
                self._set_state(SegmenterState.LISTENING)

    def stop(self) -> None:
        """Flush any in-flight utterance and return to IDLE."""
        with self.lock:
            if self.state == SegmenterState.RECORDING:
                if self._long_enough() or self.config.mode == SegmentationMode.MANUAL:
                    self._commit("stop")
                else:
                    self._discard()
            self._pre_roll.clear()
            self._candidate.clear()
            self._reset_recording_buffers()
            self.detector.reset()
            self._set_state(SegmenterState.IDLE)

    def pause(self) -> None:
        """Mute the engine. An in-flight recording is committed, never dropped."""
        with self.lock:
            if self.state in (SegmenterState.IDLE, SegmenterState.PAUSED):
                return
            if self.state == SegmenterState.RECORDING and self._has_recorded_audio():
                self._commit("pause")
            self._pre_roll.clear()
            self._candidate.clear()
            self._reset_recording_buffers()
            self._set_state(SegmenterState.PAUSED)

    def resume(self) -> None:
        """Unmute. Manual mode records immediately; automatic mode listens."""
        with self.lock:
            if self.state != SegmenterState.PAUSED:
                logger.warning(f"resume() ignored in state {self.state.value}")
                return
            if self.config.mode == SegmentationMode.MANUAL:
                self._start_recording(seed=[], voiced=[])
            else:
                self._set_state(SegmenterState.LISTENING)

    # ------------------------------------------------------------------
    # Frame ingestion
    # ------------------------------------------------------------------

    def process_frame(self, frame: AudioFrame) -> None:
        """Consume one frame. Never raises."""
        with self.lock:
            if self.state in (SegmenterState.IDLE, SegmenterState.PAUSED):
                return
            if not self._is_valid(frame):
                self.frames_skipped += 1
                return

            try:
                self.frames_processed += 1
                if self.config.streaming:
                    self._forward(frame)
                    return

                is_voice, probability = self.detector.classify(frame.data)
                if self.state == SegmenterState.LISTENING:
                    self._handle_listening(frame, is_voice)
                elif self.state == SegmenterState.RECORDING:
                    self._handle_recording(frame, is_voice)
            except Exception as e:
                logger.error(f"Error processing frame #{getattr(frame, 'sequence_number', '?')}: {e}",
                             exc_info=True)

    def _is_valid(self, frame: AudioFrame) -> bool:
        if not isinstance(frame, AudioFrame):
            logger.warning(f"Skipping non-frame input: {type(frame).__name__}")
            return False
        if not frame.data or len(frame.data) % 2:
            logger.warning(f"Skipping malformed frame #{frame.sequence_number}: "
                           f"{len(frame.data)} bytes")
            return False
        if frame.sample_rate != self.config.sample_rate:
            logger.warning(f"Skipping frame #{frame.sequence_number}: sample rate "
                           f"{frame.sample_rate}Hz != {self.config.sample_rate}Hz")
            return False
        return True

    def _forward(self, frame: AudioFrame) -> None:
        try:
            self.on_frame(dataclasses.replace(frame, streaming=True))
        except Exception as e:
            logger.error(f"Error in frame callback: {e}", exc_info=True)

    def _handle_listening(self, frame: AudioFrame, is_voice: bool) -> None:
        if is_voice:
            self._candidate.append(frame)
            if len(self._candidate) >= self.config.min_speech_frames:
                logger.debug(f"Speech detected ({len(self._candidate)} consecutive frames), "
                             f"starting recording")
                self._start_recording(seed=list(self._pre_roll), voiced=list(self._candidate))
            return

        # A broken voice run is just history now
        for candidate in self._candidate:
            self._pre_roll.append(candidate)
        self._candidate.clear()
        self._pre_roll.append(frame)

    def _handle_recording(self, frame: AudioFrame, is_voice: bool) -> None:
        if is_voice:
            if self._trailing:
                # Silence ended before the threshold: keep the pause
                self._segment.extend(self._trailing)
                self._body_ms += self._trailing_ms
                self._trailing = []
                self._trailing_ms = 0.0
            self._segment.append(frame)
            self._body_ms += frame.duration_ms
            self._consecutive_silence = 0
            self._silence_ms = 0.0
            self._voiced = True
        elif not self._voiced:
            # Manual mode before the user starts talking
            self._segment.append(frame)
            self._body_ms += frame.duration_ms
        else:
            self._trailing.append(frame)
            self._trailing_ms += frame.duration_ms
            self._consecutive_silence += 1
            if self._consecutive_silence >= self.config.silence_frames:
                self._silence_ms += frame.duration_ms
                if self._silence_ms > self.config.silence_threshold_ms:
                    if self._long_enough() or self.config.mode == SegmentationMode.MANUAL:
                        logger.debug(f"Silence threshold reached ({self._silence_ms:.0f}ms), committing")
                        self._commit("silence")
                    else:
                        logger.debug(f"Recording too short ({self._body_ms:.0f}ms), discarding")
                        self._discard()
                    return

        if self._body_ms + self._trailing_ms >= self.config.max_recording_ms:
            logger.info(f"Max recording time reached ({self._body_ms + self._trailing_ms:.0f}ms), "
                        f"forcing commit")
            self._commit("max duration")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _start_recording(self, seed: List[AudioFrame], voiced: List[AudioFrame]) -> None:
        self._reset_recording_buffers()
        self._segment = seed + voiced
        self._body_ms = sum(f.duration_ms for f in voiced)
        self._voiced = bool(voiced)
        self._recording_started_at = self.clock()
        self._pre_roll.clear()
        self._candidate.clear()
        self._set_state(SegmenterState.RECORDING)

    def _commit(self, reason: str) -> None:
        self._set_state(SegmenterState.COMMITTING)

        post_roll = self._trailing[:self.config.post_roll_frames]
        leftover = self._trailing[self.config.post_roll_frames:]
        frames = tuple(self._segment + post_roll)
        segment = AudioSegment(
            frames=frames,
            sample_rate=self.config.sample_rate,
            duration_ms=sum(f.duration_ms for f in frames),
            frame_count=len(frames),
            captured_at=self._recording_started_at,
        )
        self._reset_recording_buffers()
        # Silence after the post-roll is pre-roll for whatever comes next
        for frame in leftover:
            self._pre_roll.append(frame)

        self.commits += 1
        logger.info(f"Committing audio segment ({reason}): {segment.frame_count} frames, "
                    f"{segment.duration_ms:.0f}ms")
        try:
            self.on_commit(segment)
        except Exception as e:
            logger.error(f"Error in commit callback: {e}", exc_info=True)

        if self.config.mode == SegmentationMode.MANUAL:
            self._set_state(SegmenterState.PAUSED)
        else:
            self._set_state(SegmenterState.LISTENING)

    def _discard(self) -> None:
        self.discards += 1
        self._reset_recording_buffers()
        self._set_state(SegmenterState.LISTENING)

    def _reset_recording_buffers(self) -> None:
        self._segment: List[AudioFrame] = []
        self._trailing: List[AudioFrame] = []
        self._body_ms = 0.0
        self._trailing_ms = 0.0
        self._silence_ms = 0.0
        self._consecutive_silence = 0
        self._voiced = False
        self._recording_started_at = 0.0

    def _long_enough(self) -> bool:
        return self._body_ms >= self.config.min_recording_ms

    def _has_recorded_audio(self) -> bool:
        return self._body_ms > 0 or bool(self._trailing)

    def _set_state(self, new_state: SegmenterState) -> None:
        if self.state == new_state:
            return
        old_state = self.state
        self.state = new_state
        logger.debug(f"Segmenter state transition: {old_state.value} -> {new_state.value}")
        if self.on_state_change:
            try:
                self.on_state_change(new_state, old_state)
            except Exception as e:
                logger.error(f"Error in state change callback: {e}")

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self) -> SegmenterConfig:
        return dataclasses.replace(self.config)

    def update_config(self, **changes) -> None:
        """Replace selected settings. Buffers are cleared when pre-roll size changes."""
        with self.lock:
            self.config = dataclasses.replace(self.config, **changes)
            if self._pre_roll.maxlen != self.config.pre_roll_frames:
                self._pre_roll = deque(self._pre_roll, maxlen=self.config.pre_roll_frames)
            if "detector" in changes:
                self.detector = EnergyVoiceDetector(self.config.detector)
            logger.info(f"Segmenter configuration updated: {changes}")
