"""Publishers for assistant replies and session status events."""

import logging
from typing import Callable
from pubsub import pub
from ..models.events import ReplyEvent, SessionStatusEvent

logger = logging.getLogger(__name__)


class ReplyPublisher:
    """Publishes reply chunks using pubsub.pub."""

    def __init__(self, topic: str = "assistant.reply"):
        """Initialize reply publisher.

        Args:
            topic: Pub/sub topic name for replies
        """
        self.topic = topic
        logger.info(f"ReplyPublisher initialized with topic: {topic}")

    def publish_reply(self, event: ReplyEvent) -> None:
        pub.sendMessage(self.topic, event=event)
        if event.final or event.is_error:
            logger.debug(f"Published final reply event: {event.request_id} "
                         f"(error={event.error_code})")

    def get_callback(self) -> Callable[[ReplyEvent], None]:
        return self.publish_reply


class SessionStatusPublisher:
    """Publishes session lifecycle events using pubsub.pub."""

    def __init__(self, topic: str = "session.status"):
        self.topic = topic
        logger.info(f"SessionStatusPublisher initialized with topic: {topic}")

    def publish_status(self, event: SessionStatusEvent) -> None:
        pub.sendMessage(self.topic, event=event)
        logger.debug(f"Published session status: {event.label}")

    def get_callback(self) -> Callable[[SessionStatusEvent], None]:
        return self.publish_status
