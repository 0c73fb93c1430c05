"""Abstract base class for AI provider adapters."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional
import logging

from ..models.audio import AudioSegment
from ..models.dispatch import ProviderKind
from ..models.usage import UsageDelta

logger = logging.getLogger(__name__)


@dataclass
class ProviderResponse:
    """What a provider call returns before its stream is consumed.

    ``chunks`` yields the backend's native chunk shape; the dispatcher
    normalizes it into plain text. ``tokens`` and ``audio_seconds`` are the
    usage known when the call returns. ``auxiliary_usage`` carries usage of
    helper models (e.g. a transcription model used before chat).
    """
    chunks: AsyncIterator[Any]
    tokens: int = 0
    audio_seconds: float = 0.0
    transcription: Optional[str] = None
    auxiliary_usage: List[UsageDelta] = field(default_factory=list)


class AbstractProvider(ABC):
    """Uniform contract over one generative-AI backend."""

    kind: ProviderKind

    def __init__(self, api_key: str, base_url: Optional[str] = None):
        self.api_key = api_key
        self.base_url = base_url

    @property
    @abstractmethod
    def supports_vision(self) -> bool:
        pass

    @property
    @abstractmethod
    def supports_streaming(self) -> bool:
        pass

    @property
    def supports_live_audio(self) -> bool:
        return False

    @abstractmethod
    async def generate_text(self, model: str, prompt: str, system_prompt: str = "",
                            options: Optional[Dict[str, Any]] = None) -> ProviderResponse:
        """Start a text completion.

        Args:
            model: Backend model identifier
            prompt: User message
            system_prompt: Optional instruction prepended to the conversation
            options: Backend-specific generation options (temperature, max_tokens)

        Returns:
            ProviderResponse whose chunks stream the reply

        Raises:
            ProviderError: On transport, authentication or server failure
        """
        pass

    @abstractmethod
    async def analyze_image(self, model: str, image_base64: str, prompt: str,
                            system_prompt: str = "",
                            options: Optional[Dict[str, Any]] = None) -> ProviderResponse:
        """Start a completion over a base64-encoded JPEG/PNG image plus a prompt."""
        pass

    @abstractmethod
    async def process_audio(self, model: str, segment: AudioSegment, prompt: str,
                            system_prompt: str = "",
                            options: Optional[Dict[str, Any]] = None) -> ProviderResponse:
        """Start a completion over one spoken utterance.

        The response carries the transcription of the utterance when the
        backend produces one.
        """
        pass

    @abstractmethod
    async def validate_api_key(self) -> bool:
        """Return True when the backend accepts the configured key."""
        pass

    async def close(self) -> None:
        """Release any long-lived resources."""
        pass
