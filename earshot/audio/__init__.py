"""Audio framing, voice detection and segmentation module.

The microphone source lives in ``earshot.audio.capture`` and is imported
on demand since it needs PyAudio.
"""

from .detector import DetectorConfig, EnergyVoiceDetector
from .segmenter import SegmenterConfig, SegmenterState, SegmentationMode, SpeechSegmenter
from .publisher import AudioPublisher, SegmentPublisher
from .wav_source import WavFileSource

__all__ = [
    'DetectorConfig',
    'EnergyVoiceDetector',
    'SegmenterConfig',
    'SegmenterState',
    'SegmentationMode',
    'SpeechSegmenter',
    'AudioPublisher',
    'SegmentPublisher',
    'WavFileSource',
]
