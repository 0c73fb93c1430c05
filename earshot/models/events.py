"""Event models for the pub/sub wiring between engine, dispatcher and UI."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from ..errors import ErrorCode


class SessionStatus(str, Enum):
    """Status events emitted by the session continuity manager."""
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    RECONNECTED = "reconnected"
    RECONNECT_FAILED = "reconnect-failed"
    CLOSED = "closed"


@dataclass
class SessionStatusEvent:
    """Session lifecycle event rendered by the UI layer."""
    status: SessionStatus
    attempt: int = 0
    max_attempts: int = 0
    message: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def label(self) -> str:
        if self.status == SessionStatus.RECONNECTING:
            return f"{self.status.value} ({self.attempt}/{self.max_attempts})"
        return self.status.value


@dataclass
class ReplyEvent:
    """A chunk of a streamed reply, its completion, or its failure."""
    request_id: str
    text: str = ""
    final: bool = False
    provider: Optional[str] = None
    model: Optional[str] = None
    transcription: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_error(self) -> bool:
        return self.error_code is not None
