"""Dispatch-related data models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, AsyncIterator, Dict, Any

from .audio import AudioSegment


class ProviderKind(str, Enum):
    """Closed set of supported AI backends."""
    GROQ = "groq"
    GEMINI = "gemini"


class TaskKind(str, Enum):
    """Capability a dispatch needs from a provider."""
    TEXT = "text"
    VISION = "vision"
    AUDIO = "audio"


class TaskCategory(str, Enum):
    """Caller-facing task categories, each with its own preference."""
    TEXT_MESSAGE = "text_message"
    SCREEN_ANALYSIS = "screen_analysis"
    AUDIO_TO_TEXT = "audio_to_text"


@dataclass(frozen=True)
class DispatchPreference:
    """Primary and optional fallback (provider, model) for a task category."""
    primary_provider: ProviderKind
    primary_model: str
    fallback_provider: Optional[ProviderKind] = None
    fallback_model: Optional[str] = None

    @property
    def has_fallback(self) -> bool:
        return self.fallback_provider is not None and bool(self.fallback_model)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DispatchPreference":
        fallback = data.get("fallback_provider")
        return cls(
            primary_provider=ProviderKind(data["primary_provider"]),
            primary_model=data["primary_model"],
            fallback_provider=ProviderKind(fallback) if fallback else None,
            fallback_model=data.get("fallback_model"),
        )


@dataclass
class TextPayload:
    prompt: str
    system_prompt: str = ""
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ImagePayload:
    image_base64: str
    prompt: str
    system_prompt: str = ""
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AudioPayload:
    segment: AudioSegment
    prompt: str
    system_prompt: str = ""
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DispatchResult:
    """A fresh, forward-only stream of text chunks plus where it came from."""
    stream: AsyncIterator[str]
    provider: ProviderKind
    model: str
    transcription: Optional[str] = None
    used_fallback: bool = False
