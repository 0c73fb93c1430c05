"""Main application entry point for Earshot."""

import sys
import time
import argparse
import logging
from pathlib import Path
from typing import Optional

from .audio.publisher import AudioPublisher
from .audio.wav_source import WavFileSource
from .config import EarshotConfig
from .errors import EarshotError
from .services.assistant_service import AssistantService
from .ui.assistant_screen import AssistantScreen

logger = logging.getLogger(__name__)

FRAME_TOPIC = "audio.frame"


class Server:

    def __init__(self, config_path: Optional[str], log_level: Optional[str] = None):
        # Load configuration
        self.config = EarshotConfig(config_path)
        # Command line level overrides the config
        setup_logging(self.config, log_level or self.config.get('logging.level', 'INFO'))
        self.should_exit = False
        self.source = None

    def init(self, wav_path: Optional[str] = None):
        logger.info("Initializing services...")

        sample_rate = self.config.get('audio.sample_rate', 16000)
        frame_size = self.config.get('audio.frame_size', 320)
        logger.info(f"Audio settings: {sample_rate}Hz, {frame_size} samples/frame "
                    f"({frame_size * 1000 / sample_rate:.0f}ms)")

        self.audio_publisher = AudioPublisher(FRAME_TOPIC)
        self.screen = AssistantScreen()
        self.assistant = AssistantService(self.config, frame_topic=FRAME_TOPIC)

        wav_path = wav_path or (self.config.get('audio.wav_path')
                                if self.config.get('audio.source') == 'wav' else None)
        if wav_path:
            self.source = WavFileSource(wav_path, sample_rate=sample_rate, frame_size=frame_size)
        else:
            # Imported lazily: PyAudio is an optional dependency
            from .audio.capture import MicrophoneSource
            self.source = MicrophoneSource(
                callback=self.audio_publisher.get_callback(),
                sample_rate=sample_rate,
                frame_size=frame_size,
                device_index=self.config.get('audio.device_index'),
            )

    def run(self, duration: Optional[int]):
        try:
            self.assistant.start()
            if isinstance(self.source, WavFileSource):
                sent = self.source.replay(self.audio_publisher.get_callback(),
                                          realtime=self.config.get('audio.realtime_replay', False),
                                          max_seconds=duration)
                logger.info(f"Replayed {sent} frames")
            else:
                self.source.start()
                if duration:
                    time.sleep(duration)
                else:
                    while not self.should_exit:
                        time.sleep(1)
        finally:
            self.cleanup()

    def cleanup(self):
        if self.source is not None and not isinstance(self.source, WavFileSource):
            self.source.stop()
        self.assistant.stop()
        self.screen.print_usage(self.assistant.get_usage_stats())
        self.screen.shutdown()


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/earshot.log')
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    file_handler.setFormatter(file_formatter)
    handlers.append(file_handler)

    # Console handler - only if enabled in config
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(console_formatter)
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger = logging.getLogger(__name__)
    logger.info("=" * 50)
    logger.info("Earshot starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def main() -> None:
    """Main entry point for Earshot."""
    parser = argparse.ArgumentParser(
        description="Earshot - voice-activated AI assistant",
    )

    parser.add_argument(
        "--config",
        type=str,
        default="earshot.yaml",
        help="Path to configuration YAML file (default: earshot.yaml)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: from config, else INFO)"
    )

    parser.add_argument(
        "--wav",
        type=str,
        help="Replay a 16-bit mono WAV file instead of capturing from the microphone"
    )

    parser.add_argument(
        "--duration",
        type=int,
        help="Stop after this many seconds of audio (default: run until interrupted)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="Earshot v0.1.0"
    )

    args = parser.parse_args()

    try:
        server = Server(args.config, args.log_level)
    except (FileNotFoundError, ValueError) as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(1)

    try:
        server.init(args.wav)
        server.run(args.duration)
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
    except EarshotError as e:
        print(f"❌ Error: {e}")
        logging.error(f"Application error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
