"""AI provider adapters and the capability registry."""

from .base import AbstractProvider, ProviderResponse
from .catalog import ModelCatalog, DEFAULT_MODELS
from .registry import ProviderRegistry, PROVIDER_CLASSES
from .stream import normalize_stream
from .groq import GroqProvider
from .gemini import GeminiProvider

__all__ = [
    'AbstractProvider',
    'ProviderResponse',
    'ModelCatalog',
    'DEFAULT_MODELS',
    'ProviderRegistry',
    'PROVIDER_CLASSES',
    'normalize_stream',
    'GroqProvider',
    'GeminiProvider',
]
