"""Terminal renderer for assistant replies and session status."""

import logging
import threading
from typing import Any, Dict, List, Optional

from pubsub import pub
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..models.events import ReplyEvent, SessionStatus, SessionStatusEvent

logger = logging.getLogger(__name__)


STATUS_STYLES = {
    SessionStatus.CONNECTED: "bold green",
    SessionStatus.RECONNECTING: "yellow",
    SessionStatus.RECONNECTED: "green",
    SessionStatus.RECONNECT_FAILED: "bold red",
    SessionStatus.CLOSED: "dim",
}


class AssistantScreen:
    """Subscribes to reply and status topics and prints them with rich.

    Reply chunks are accumulated per request and printed as one panel when
    the final event arrives, since replies may complete out of order.
    """

    def __init__(self, reply_topic: str = "assistant.reply",
                 status_topic: str = "session.status",
                 console: Optional[Console] = None):
        self.console = console or Console()
        self.reply_topic = reply_topic
        self.status_topic = status_topic

        self.lock = threading.Lock()
        self.pending: Dict[str, List[str]] = {}
        self.answered = 0
        self.errors = 0

        pub.subscribe(self.on_reply, reply_topic)
        pub.subscribe(self.on_status, status_topic)
        logger.info(f"AssistantScreen subscribed to {reply_topic} and {status_topic}")

    def on_reply(self, event: ReplyEvent) -> None:
        with self.lock:
            if not event.final:
                self.pending.setdefault(event.request_id, []).append(event.text)
                return
            pieces = self.pending.pop(event.request_id, [])

        if event.is_error:
            self.errors += 1
            self.console.print(f"❌ {event.error_code.value}: {event.text}", style="bold red")
            return

        self.answered += 1
        body = Text()
        if event.transcription:
            body.append(f"🎙️  {event.transcription}\n\n", style="cyan")
        body.append("".join(pieces) + event.text)
        title = f"{event.provider}:{event.model}" if event.provider else None
        self.console.print(Panel(body, title=title, border_style="blue"))

    def on_status(self, event: SessionStatusEvent) -> None:
        style = STATUS_STYLES.get(event.status, "")
        line = f"● Session {event.label}"
        if event.message:
            line += f": {event.message}"
        self.console.print(line, style=style)

    def print_usage(self, stats: Dict[str, Dict[str, Any]]) -> None:
        table = Table(title="Model usage today")
        table.add_column("Provider")
        table.add_column("Model")
        table.add_column("Requests", justify="right")
        table.add_column("Limit", justify="right")
        table.add_column("Used", justify="right")

        for entry in stats.values():
            if not entry["count"]:
                continue
            limit = entry["limit"]
            table.add_row(entry["provider"], entry["model"], str(entry["count"]),
                          str(limit) if limit else "∞", f"{entry['percentage']}%")
        self.console.print(table)

    def shutdown(self) -> None:
        pub.unsubscribe(self.on_reply, self.reply_topic)
        pub.unsubscribe(self.on_status, self.status_topic)
        logger.info(f"AssistantScreen shut down: {self.answered} replies, {self.errors} errors")
