"""Provider registry: one lazily built adapter per ProviderKind."""

import logging
import threading
from typing import Dict, Optional, Type

from ..errors import ProviderError
from ..models.dispatch import ProviderKind
from .base import AbstractProvider
from .gemini import GeminiProvider
from .groq import GroqProvider

logger = logging.getLogger(__name__)


PROVIDER_CLASSES: Dict[ProviderKind, Type[AbstractProvider]] = {
    ProviderKind.GROQ: GroqProvider,
    ProviderKind.GEMINI: GeminiProvider,
}


class ProviderRegistry:
    """Builds and caches provider adapters from configured API keys."""

    def __init__(self, api_keys: Optional[Dict[str, str]] = None,
                 base_urls: Optional[Dict[str, str]] = None):
        self.api_keys = dict(api_keys or {})
        self.base_urls = dict(base_urls or {})
        self._instances: Dict[ProviderKind, AbstractProvider] = {}
        self._lock = threading.Lock()

    def get(self, kind: ProviderKind) -> AbstractProvider:
        """Return the adapter for ``kind``, creating it on first use.

        Raises:
            ProviderError: If no API key is configured for the provider
        """
        kind = ProviderKind(kind)
        with self._lock:
            provider = self._instances.get(kind)
            if provider is not None:
                return provider

            api_key = self.api_keys.get(kind.value)
            if not api_key:
                raise ProviderError(f"No API key configured for {kind.value}", provider=kind.value)
            provider = PROVIDER_CLASSES[kind](api_key, self.base_urls.get(kind.value))
            self._instances[kind] = provider
            logger.info(f"Created {kind.value} provider")
            return provider

    def register(self, provider: AbstractProvider) -> None:
        """Install a ready-made adapter (replaces any cached one)."""
        with self._lock:
            self._instances[provider.kind] = provider

    def set_api_key(self, kind: ProviderKind, api_key: str) -> None:
        kind = ProviderKind(kind)
        self.api_keys[kind.value] = api_key
        self.reset(kind)

    def reset(self, kind: Optional[ProviderKind] = None) -> None:
        """Drop cached adapters so the next ``get`` picks up new keys."""
        with self._lock:
            if kind is None:
                self._instances.clear()
            else:
                self._instances.pop(ProviderKind(kind), None)
        logger.info(f"Reset provider instances: {kind.value if kind else 'all'}")

    async def validate_api_key(self, kind: ProviderKind) -> bool:
        return await self.get(kind).validate_api_key()

    async def close(self) -> None:
        with self._lock:
            providers = list(self._instances.values())
        for provider in providers:
            await provider.close()
