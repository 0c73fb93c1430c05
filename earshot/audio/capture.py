"""Microphone capture producing fixed-size PCM16 frames."""

import pyaudio
import time
import logging
from threading import Thread, Event
from typing import Optional, Callable
from datetime import datetime

from ..errors import AudioCaptureFailedError
from ..models.audio import AudioFrame, AudioStats


logger = logging.getLogger(__name__)


class MicrophoneSource:
    """Continuous microphone capture delivering AudioFrames to a callback."""

    def __init__(
        self,
        callback: Callable[[AudioFrame], None],
        sample_rate: int = 16000,
        frame_size: int = 320,
        device_index: Optional[int] = None,
    ):
        """Initialize microphone capture.

        Args:
            callback: Receives each captured frame on the capture thread
            sample_rate: Audio sample rate
            frame_size: Samples per frame (320 = 20ms at 16kHz)
            device_index: PyAudio input device, or None for the default
        """
        self.frame_callback = callback
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self.device_index = device_index

        self.capture_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.is_recording = False
        self.error: Optional[Exception] = None

        self.start_time: Optional[datetime] = None
        self.total_frames = 0

        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None

    def start(self) -> None:
        """Open the device and start capturing in a background thread."""
        if self.is_recording:
            logger.warning("Capture already in progress")
            return

        logger.info("Starting microphone capture")
        self.stop_event.clear()
        self.error = None
        self.start_time = datetime.now()
        self.total_frames = 0

        try:
            stream = self._open_stream()
        except (OSError, IOError) as e:
            raise AudioCaptureFailedError(f"Could not open microphone: {e}") from e

        self.capture_thread = Thread(target=self._capture_continuously, args=(stream,), daemon=True)
        self.capture_thread.name = "MicrophoneCaptureThread"
        self.capture_thread.start()
        self.is_recording = True

    def stop(self) -> None:
        """Stop capturing and release the device."""
        if not self.is_recording:
            return

        logger.info("Stopping microphone capture")
        self.stop_event.set()
        if self.capture_thread and self.capture_thread.is_alive():
            self.capture_thread.join(timeout=2.0)
            if self.capture_thread.is_alive():
                logger.warning("Capture thread did not stop cleanly")

        self.is_recording = False
        logger.info(f"Capture stopped. Total frames: {self.total_frames}")

    def _open_stream(self) -> "pyaudio.Stream":
        self.pyaudio_instance = pyaudio.PyAudio()
        stream = self.pyaudio_instance.open(
            format=pyaudio.paInt16,
            channels=1,
            rate=self.sample_rate,
            input=True,
            input_device_index=self.device_index,
            frames_per_buffer=self.frame_size,
        )
        logger.info(f"Audio stream opened: {self.sample_rate}Hz, {self.frame_size} samples/frame")
        return stream

    def _capture_continuously(self, stream) -> None:
        try:
            while not self.stop_event.is_set():
                data = stream.read(self.frame_size, exception_on_overflow=False)
                self.total_frames += 1
                frame = AudioFrame(
                    data=data,
                    sample_rate=self.sample_rate,
                    sequence_number=self.total_frames,
                    timestamp=time.time(),
                )
                self.frame_callback(frame)
        except (OSError, IOError) as e:
            self.error = AudioCaptureFailedError(f"Microphone read failed: {e}")
            logger.error(str(self.error))
        finally:
            stream.stop_stream()
            stream.close()
            if self.pyaudio_instance:
                self.pyaudio_instance.terminate()
                self.pyaudio_instance = None

    def get_stats(self) -> AudioStats:
        duration = 0.0
        if self.start_time:
            duration = (datetime.now() - self.start_time).total_seconds()
        return AudioStats(
            is_recording=self.is_recording,
            duration_seconds=duration,
            sample_rate=self.sample_rate,
            frame_size=self.frame_size,
            total_frames=self.total_frames,
        )
