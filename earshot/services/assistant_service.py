"""Assistant service: wires segmentation, dispatch and the live session together."""

import asyncio
import logging
import threading
from typing import Any, Dict, Optional

from pubsub import pub

from ..audio.publisher import SegmentPublisher
from ..audio.segmenter import SpeechSegmenter
from ..config import EarshotConfig
from ..errors import NoActiveSessionError
from ..models.audio import AudioFrame
from ..providers.catalog import ModelCatalog
from ..providers.registry import ProviderRegistry
from ..storage.usage_store import UsageStore
from .conversation import ConversationLog
from .dispatch_consumer import DispatchConsumer
from .dispatcher import Dispatcher
from .live_connector import GeminiLiveConnector, LiveConnector
from .publisher import ReplyPublisher, SessionStatusPublisher
from .session_manager import SessionContinuityManager
from .usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


SEGMENT_TOPIC = "speech.segment"
REPLY_TOPIC = "assistant.reply"
STATUS_TOPIC = "session.status"


class AssistantService:
    """Owns the service objects and their lifecycle.

    Frames published on ``frame_topic`` go to the segmenter. Committed
    segments are published on ``speech.segment`` and picked up by dispatch
    workers, whose replies are published on ``assistant.reply``. In streaming
    mode frames bypass segmentation and go to the live session instead, whose
    status events are published on ``session.status``.
    """

    def __init__(self, config: EarshotConfig, frame_topic: str = "audio.frame",
                 registry: Optional[ProviderRegistry] = None,
                 connector: Optional[LiveConnector] = None):
        self.config = config
        self.frame_topic = frame_topic
        self.is_running = False

        catalog = ModelCatalog().with_overrides(config.get_limit_overrides())
        self.store = UsageStore(
            config.get_usage_path(),
            flush_every=config.get('usage.flush_every', 5),
            flush_interval=config.get('usage.flush_interval_seconds', 5.0),
        )
        self.ledger = UsageLedger(self.store, catalog)
        self.registry = registry or ProviderRegistry(config.get_api_keys(), config.get_base_urls())
        self.dispatcher = Dispatcher(self.registry, self.ledger, config.get_preferences())
        self.conversation = ConversationLog()

        self.segment_publisher = SegmentPublisher(SEGMENT_TOPIC)
        self.reply_publisher = ReplyPublisher(REPLY_TOPIC)
        self.status_publisher = SessionStatusPublisher(STATUS_TOPIC)

        self.consumer = DispatchConsumer(
            self.dispatcher,
            result_callback=self.reply_publisher.get_callback(),
            conversation=self.conversation,
            audio_prompt=config.get('assistant.audio_prompt', ''),
            system_prompt=config.get('assistant.system_prompt', ''),
            max_concurrent_threads=config.get('assistant.workers', 4),
        )

        segmenter_config = config.get_segmenter_config()
        self.streaming = segmenter_config.streaming
        self.segmenter = SpeechSegmenter(
            on_commit=self.segment_publisher.get_callback(),
            config=segmenter_config,
            on_frame=self._on_live_frame if self.streaming else None,
        )

        self.session_manager: Optional[SessionContinuityManager] = None
        self.live_loop: Optional[asyncio.AbstractEventLoop] = None
        self.live_thread: Optional[threading.Thread] = None
        if self.streaming:
            self.session_manager = SessionContinuityManager(
                connector or GeminiLiveConnector(),
                conversation=self.conversation,
                max_attempts=config.get('session.max_reconnect_attempts', 3),
                reconnect_delay=config.get('session.reconnect_delay_seconds', 2.0),
                context_turns=config.get('session.context_turns', 20),
                on_status=self.status_publisher.get_callback(),
                on_reply=self.reply_publisher.get_callback(),
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            logger.warning("Assistant service already running")
            return

        pub.subscribe(self.consumer.on_segment, SEGMENT_TOPIC)
        pub.subscribe(self.segmenter.process_frame, self.frame_topic)

        if self.session_manager is not None:
            self._start_live_loop()
            params = self.config.get_session_params()
            if params is None:
                raise ValueError("Streaming mode needs a Gemini API key")
            future = asyncio.run_coroutine_threadsafe(self.session_manager.initialize(params),
                                                      self.live_loop)
            future.result(timeout=self.session_manager.connect_timeout + 5)

        self.segmenter.start()
        self.is_running = True
        logger.info(f"Assistant service started (streaming={self.streaming}, "
                    f"mode={self.segmenter.config.mode.value})")

    def stop(self) -> Dict[str, Any]:
        """Flush the segmenter, drain dispatches and persist usage."""
        if not self.is_running:
            return {"success": True}

        logger.info("Shutting down assistant service...")
        self.segmenter.stop()
        pub.unsubscribe(self.segmenter.process_frame, self.frame_topic)
        pub.unsubscribe(self.consumer.on_segment, SEGMENT_TOPIC)

        consumer_success = self.consumer.shutdown(timeout=30.0)
        if self.session_manager is not None:
            asyncio.run_coroutine_threadsafe(self.session_manager.close(),
                                             self.live_loop).result(timeout=10)
            self._stop_live_loop()

        self.ledger.flush()
        self.is_running = False
        logger.info(f"Assistant service shutdown complete: success={consumer_success}")
        return {"success": consumer_success, "turns": len(self.conversation)}

    def _start_live_loop(self) -> None:
        self.live_loop = asyncio.new_event_loop()

        def run():
            asyncio.set_event_loop(self.live_loop)
            self.live_loop.run_forever()
            self.live_loop.close()

        self.live_thread = threading.Thread(target=run, name="LiveSessionLoop", daemon=True)
        self.live_thread.start()

    def _stop_live_loop(self) -> None:
        self.live_loop.call_soon_threadsafe(self.live_loop.stop)
        self.live_thread.join(timeout=5.0)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def process_frame(self, frame: AudioFrame) -> None:
        self.segmenter.process_frame(frame)

    def _on_live_frame(self, frame: AudioFrame) -> None:
        if self.live_loop is None:
            return
        future = asyncio.run_coroutine_threadsafe(
            self.session_manager.send_audio(frame.data, frame.sample_rate), self.live_loop)
        future.add_done_callback(self._log_live_send_error)

    @staticmethod
    def _log_live_send_error(future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if isinstance(error, NoActiveSessionError):
            logger.debug("Dropped live frame: no active session")
        elif error is not None:
            logger.warning(f"Failed to send live frame: {error}")

    def submit_text(self, prompt: str) -> Optional[str]:
        return self.consumer.submit_text(prompt)

    def submit_image(self, image_base64: str, prompt: str) -> Optional[str]:
        return self.consumer.submit_image(image_base64, prompt)

    def pause(self) -> None:
        self.segmenter.pause()

    def resume(self) -> None:
        self.segmenter.resume()

    def get_usage_stats(self) -> Dict[str, Dict[str, Any]]:
        return self.ledger.get_all_usage_stats()
