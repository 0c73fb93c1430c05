"""Data models for the Earshot application."""

from .audio import AudioStats, AudioFrame, AudioSegment
from .usage import ModelLimits, ProviderModelDescriptor, UsageRecord, UsageDelta
from .dispatch import (
    ProviderKind,
    TaskKind,
    TaskCategory,
    DispatchPreference,
    TextPayload,
    ImagePayload,
    AudioPayload,
    DispatchResult,
)
from .session import SessionPhase, SessionParams, SessionState, ConversationTurn
from .events import SessionStatus, SessionStatusEvent, ReplyEvent

__all__ = [
    "AudioStats",
    "AudioFrame",
    "AudioSegment",
    # Usage accounting
    "ModelLimits",
    "ProviderModelDescriptor",
    "UsageRecord",
    "UsageDelta",
    # Dispatch
    "ProviderKind",
    "TaskKind",
    "TaskCategory",
    "DispatchPreference",
    "TextPayload",
    "ImagePayload",
    "AudioPayload",
    "DispatchResult",
    # Session
    "SessionPhase",
    "SessionParams",
    "SessionState",
    "ConversationTurn",
    "SessionStatus",
    "SessionStatusEvent",
    "ReplyEvent",
]
