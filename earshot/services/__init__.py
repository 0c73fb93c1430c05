"""Services layer: usage accounting, dispatch and session continuity."""

from .usage_ledger import UsageLedger
from .dispatcher import Dispatcher
from .conversation import ConversationLog
from .dispatch_consumer import DispatchConsumer
from .live_connector import GeminiLiveConnector, LiveConnector, LiveHandlers, LiveSession
from .session_manager import SessionContinuityManager

__all__ = [
    "UsageLedger",
    "Dispatcher",
    "ConversationLog",
    "DispatchConsumer",
    "GeminiLiveConnector",
    "LiveConnector",
    "LiveHandlers",
    "LiveSession",
    "SessionContinuityManager",
]
