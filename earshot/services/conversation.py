"""In-memory conversation log for the current session."""

import random
import string
import logging
import threading
from datetime import datetime
from typing import List, Optional

from ..models.session import ConversationTurn

logger = logging.getLogger(__name__)


CONTEXT_PREAMBLE = ("Till now all these questions were asked in the interview, "
                    "answer the last one please:\n\n")


class ConversationLog:
    """Ordered list of turns for one session, safe to share between threads."""

    def __init__(self):
        self.lock = threading.Lock()
        self.turns: List[ConversationTurn] = []
        self.session_id = self._new_session_id()

    @staticmethod
    def _new_session_id() -> str:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        random_suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=4))
        return f"{timestamp}_{random_suffix}"

    def new_session(self) -> str:
        """Start a fresh session, dropping all turns. Returns the new session id."""
        with self.lock:
            self.turns = []
            self.session_id = self._new_session_id()
        logger.info(f"Started conversation session {self.session_id}")
        return self.session_id

    def save_turn(self, transcription: str, ai_response: str) -> Optional[ConversationTurn]:
        """Append a turn. Turns with neither side filled in are ignored."""
        transcription = (transcription or "").strip()
        ai_response = (ai_response or "").strip()
        if not transcription and not ai_response:
            return None

        turn = ConversationTurn(transcription=transcription, ai_response=ai_response)
        with self.lock:
            self.turns.append(turn)
            count = len(self.turns)
        logger.debug(f"Saved turn #{count} in session {self.session_id}")
        return turn

    def history(self) -> List[ConversationTurn]:
        with self.lock:
            return list(self.turns)

    def recent(self, count: int) -> List[ConversationTurn]:
        if count <= 0:
            return []
        with self.lock:
            return list(self.turns[-count:])

    def build_context_message(self, count: int = 20) -> Optional[str]:
        """Condense the last ``count`` turns into a priming message.

        Returns:
            The message, or None when no turn has a transcription
        """
        questions = [t.transcription for t in self.recent(count) if t.transcription]
        if not questions:
            return None
        return CONTEXT_PREAMBLE + "\n".join(questions)

    def __len__(self) -> int:
        with self.lock:
            return len(self.turns)
