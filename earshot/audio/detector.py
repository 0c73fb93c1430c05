"""Energy-and-probability voice detector with an adaptive threshold."""

import math
import logging
from collections import deque
from dataclasses import dataclass
from typing import Tuple

from .pcm import pcm16_rms

logger = logging.getLogger(__name__)


@dataclass
class DetectorConfig:
    """Detector tuning. All values are empirically chosen defaults."""
    energy_floor: float = 200.0      # RMS at or below which a frame is silence
    energy_ceiling: float = 3000.0   # RMS at or above which probability is 1.0
    voice_threshold: float = 0.5     # Probability needed to call a frame voice
    adaptive: bool = True
    adaptive_window: int = 100       # Frames in the rolling speech-rate window
    high_speech_rate: float = 0.8
    low_speech_rate: float = 0.05
    threshold_step: float = 0.05
    min_threshold: float = 0.3
    max_threshold: float = 0.8


class EnergyVoiceDetector:
    """Classifies PCM16 frames as voice or silence.

    RMS energy is mapped onto a 0..1 voice probability on a log scale between
    ``energy_floor`` and ``energy_ceiling``. The decision threshold drifts
    within ``[min_threshold, max_threshold]`` based on how often recent
    frames were classified as speech.
    """

    def __init__(self, config: DetectorConfig = None):
        self.config = config or DetectorConfig()
        if self.config.energy_ceiling <= self.config.energy_floor:
            raise ValueError("energy_ceiling must be greater than energy_floor")
        if self.config.energy_floor <= 0:
            raise ValueError("energy_floor must be > 0")

        self.threshold = self._clamp(self.config.voice_threshold)
        self.recent_decisions = deque(maxlen=self.config.adaptive_window)
        self.adjustments = 0

        self._log_floor = math.log10(self.config.energy_floor)
        self._log_span = math.log10(self.config.energy_ceiling) - self._log_floor

    def voice_probability(self, pcm16: bytes) -> float:
        """Return the voice probability of a frame in [0, 1]."""
        rms = pcm16_rms(pcm16)
        if rms <= self.config.energy_floor:
            return 0.0
        probability = (math.log10(rms) - self._log_floor) / self._log_span
        return min(1.0, max(0.0, probability))

    def classify(self, pcm16: bytes) -> Tuple[bool, float]:
        """Classify a frame, feeding the decision into the adaptive window.

        Returns:
            Tuple of (is_voice, probability)
        """
        probability = self.voice_probability(pcm16)
        is_voice = probability > 0.0 and probability >= self.threshold
        if self.config.adaptive:
            self._track(is_voice)
        return is_voice, probability

    def _track(self, is_voice: bool) -> None:
        self.recent_decisions.append(is_voice)
        if len(self.recent_decisions) < self.recent_decisions.maxlen:
            return

        speech_rate = sum(self.recent_decisions) / len(self.recent_decisions)
        old_threshold = self.threshold
        if speech_rate > self.config.high_speech_rate:
            # Probably noise being taken for speech
            self.threshold = self._clamp(self.threshold + self.config.threshold_step)
        elif speech_rate < self.config.low_speech_rate:
            self.threshold = self._clamp(self.threshold - self.config.threshold_step)
        else:
            return

        # Start a fresh window so one adjustment is made per window
        self.recent_decisions.clear()
        if self.threshold != old_threshold:
            self.adjustments += 1
            logger.debug(f"Voice threshold adjusted {old_threshold:.2f} -> {self.threshold:.2f} "
                         f"(speech rate {speech_rate:.1%})")

    def _clamp(self, value: float) -> float:
        return min(self.config.max_threshold, max(self.config.min_threshold, value))

    def reset(self) -> None:
        self.threshold = self._clamp(self.config.voice_threshold)
        self.recent_decisions.clear()
