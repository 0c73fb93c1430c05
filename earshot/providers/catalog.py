"""Static capability and limit table for every known (provider, model) pair."""

import logging
from dataclasses import replace
from typing import Dict, Iterable, Iterator, Optional, Tuple, Any

from ..models.dispatch import ProviderKind
from ..models.usage import ModelLimits, ProviderModelDescriptor

logger = logging.getLogger(__name__)


DEFAULT_MODELS = (
    ProviderModelDescriptor(
        provider=ProviderKind.GROQ.value,
        model="llama-3.3-70b-versatile",
        limits=ModelLimits(requests_per_day=1000, tokens_per_minute=12000),
    ),
    ProviderModelDescriptor(
        provider=ProviderKind.GROQ.value,
        model="meta-llama/llama-4-maverick-17b-128e-instruct",
        supports_vision=True,
        limits=ModelLimits(requests_per_day=1000, tokens_per_minute=6000),
    ),
    ProviderModelDescriptor(
        provider=ProviderKind.GROQ.value,
        model="meta-llama/llama-4-scout-17b-16e-instruct",
        supports_vision=True,
        limits=ModelLimits(requests_per_day=1000, tokens_per_minute=30000),
    ),
    ProviderModelDescriptor(
        provider=ProviderKind.GROQ.value,
        model="llama-3.1-8b-instant",
        limits=ModelLimits(requests_per_day=14400, tokens_per_minute=6000),
    ),
    ProviderModelDescriptor(
        provider=ProviderKind.GROQ.value,
        model="whisper-large-v3-turbo",
        supports_streaming=False,
        limits=ModelLimits(requests_per_day=2000,
                           audio_seconds_per_hour=7200,
                           audio_seconds_per_day=28800),
    ),
    ProviderModelDescriptor(
        provider=ProviderKind.GEMINI.value,
        model="gemini-2.5-flash",
        supports_vision=True,
        limits=ModelLimits(requests_per_day=20, tokens_per_minute=250000),
    ),
    ProviderModelDescriptor(
        provider=ProviderKind.GEMINI.value,
        model="gemini-2.5-flash-lite",
        supports_vision=True,
        limits=ModelLimits(requests_per_day=20, tokens_per_minute=250000),
    ),
    ProviderModelDescriptor(
        provider=ProviderKind.GEMINI.value,
        model="gemini-3-flash-preview",
        supports_vision=True,
        limits=ModelLimits(requests_per_day=20, tokens_per_minute=250000),
    ),
    ProviderModelDescriptor(
        provider=ProviderKind.GEMINI.value,
        model="gemini-2.5-flash-native-audio-preview-12-2025",
        supports_live_audio=True,
        limits=ModelLimits(tokens_per_minute=1000000),
    ),
)


class ModelCatalog:
    """Read-only lookup of ProviderModelDescriptors."""

    def __init__(self, descriptors: Iterable[ProviderModelDescriptor] = DEFAULT_MODELS):
        self._descriptors: Dict[Tuple[str, str], ProviderModelDescriptor] = {
            (d.provider, d.model): d for d in descriptors
        }

    def get(self, provider: str, model: str) -> Optional[ProviderModelDescriptor]:
        return self._descriptors.get((_provider_name(provider), model))

    def __contains__(self, key: Tuple[str, str]) -> bool:
        provider, model = key
        return (_provider_name(provider), model) in self._descriptors

    def __iter__(self) -> Iterator[ProviderModelDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)

    def with_overrides(self, overrides: Dict[str, Dict[str, Dict[str, Any]]]) -> "ModelCatalog":
        """Return a new catalog with limit/capability overrides applied.

        ``overrides`` is shaped like the ``limits`` config section::

            {"groq": {"llama-3.3-70b-versatile": {"requests_per_day": 500}}}

        Unknown models are added as new descriptors.
        """
        descriptors = dict(self._descriptors)
        for provider, models in (overrides or {}).items():
            for model, fields in (models or {}).items():
                key = (provider, model)
                current = descriptors.get(key) or ProviderModelDescriptor(provider=provider, model=model)
                limit_fields = {k: v for k, v in fields.items() if k in ModelLimits.__dataclass_fields__}
                flag_fields = {k: v for k, v in fields.items()
                               if k in ("supports_vision", "supports_streaming", "supports_live_audio")}
                unknown = set(fields) - set(limit_fields) - set(flag_fields)
                if unknown:
                    logger.warning(f"Ignoring unknown limit keys for {provider}:{model}: {sorted(unknown)}")
                descriptors[key] = replace(current,
                                           limits=replace(current.limits, **limit_fields),
                                           **flag_fields)
                logger.info(f"Applied catalog override for {provider}:{model}")
        return ModelCatalog(descriptors.values())


def _provider_name(provider) -> str:
    return provider.value if isinstance(provider, ProviderKind) else str(provider)
