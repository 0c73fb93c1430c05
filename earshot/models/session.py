"""Session-related data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import time


class SessionPhase(Enum):
    """Lifecycle phase of the duplex session."""
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class SessionParams:
    """Connection parameters, reused verbatim on reconnect."""
    api_key: str
    model: str
    instruction: str = ""
    language: str = "en-US"


@dataclass
class SessionState:
    """Mutable state owned by the session continuity manager."""
    phase: SessionPhase = SessionPhase.CLOSED
    reconnect_attempts: int = 0
    max_attempts: int = 3
    last_params: Optional[SessionParams] = None
    is_user_initiated_close: bool = False

    @property
    def is_open(self) -> bool:
        return self.phase == SessionPhase.OPEN


@dataclass
class ConversationTurn:
    """One question/answer exchange in the current session."""
    transcription: str
    ai_response: str
    timestamp: float = field(default_factory=time.time)
