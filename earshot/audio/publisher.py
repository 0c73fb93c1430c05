"""Audio publishers for pub/sub event publishing."""

import logging
from typing import Callable
from pubsub import pub
from ..models.audio import AudioFrame, AudioSegment

logger = logging.getLogger(__name__)


class AudioPublisher:
    """Publishes captured audio frames using pubsub.pub."""

    def __init__(self, topic: str = "audio.frame"):
        """Initialize audio publisher.

        Args:
            topic: Pub/sub topic name for audio frames
        """
        self.topic = topic
        logger.info(f"AudioPublisher initialized with topic: {topic}")

    def publish_frame(self, frame: AudioFrame) -> None:
        pub.sendMessage(self.topic, frame=frame)

    def get_callback(self) -> Callable[[AudioFrame], None]:
        return self.publish_frame


class SegmentPublisher:
    """Publishes committed speech segments using pubsub.pub."""

    def __init__(self, topic: str = "speech.segment"):
        """Initialize segment publisher.

        Args:
            topic: Pub/sub topic name for committed segments
        """
        self.topic = topic
        logger.info(f"SegmentPublisher initialized with topic: {topic}")

    def publish_segment(self, segment: AudioSegment) -> None:
        """Publish a committed segment to the pub/sub topic.

        Args:
            segment: AudioSegment produced by the segmenter
        """
        pub.sendMessage(self.topic, segment=segment)
        logger.debug(f"Published segment: frames #{segment.first_sequence_number}-"
                     f"#{segment.last_sequence_number} ({segment.duration_ms:.0f}ms)")

    def get_callback(self) -> Callable[[AudioSegment], None]:
        """Get callback function for the segmenter to commit into.

        Returns:
            Callback function that publishes segments
        """
        return self.publish_segment
