"""Dispatcher: routes a task to the preferred provider with a single fallback."""

import logging
from typing import Dict, List, Optional, Tuple, Union

from ..errors import EarshotError, ProviderError, RateLimitExceededError
from ..models.dispatch import (
    AudioPayload,
    DispatchPreference,
    DispatchResult,
    ImagePayload,
    ProviderKind,
    TaskCategory,
    TaskKind,
    TextPayload,
)
from ..providers.base import ProviderResponse
from ..providers.registry import ProviderRegistry
from ..providers.stream import normalize_stream
from .usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


Payload = Union[TextPayload, ImagePayload, AudioPayload]

TASK_KIND_FOR_CATEGORY = {
    TaskCategory.TEXT_MESSAGE: TaskKind.TEXT,
    TaskCategory.SCREEN_ANALYSIS: TaskKind.VISION,
    TaskCategory.AUDIO_TO_TEXT: TaskKind.AUDIO,
}


class Dispatcher:
    """Picks a usable (provider, model), invokes it and records usage."""

    def __init__(self, registry: ProviderRegistry, ledger: UsageLedger,
                 preferences: Optional[Dict[TaskCategory, DispatchPreference]] = None):
        self.registry = registry
        self.ledger = ledger
        self.preferences = dict(preferences or {})

        # Statistics
        self.dispatches = 0
        self.fallbacks = 0
        self.failures = 0

    def preference_for(self, category: TaskCategory) -> DispatchPreference:
        try:
            return self.preferences[category]
        except KeyError:
            raise ProviderError(f"No provider preference configured for {category.value}") from None

    async def dispatch_category(self, category: TaskCategory, payload: Payload) -> DispatchResult:
        """Dispatch using the configured preference for a task category."""
        return await self.dispatch(TASK_KIND_FOR_CATEGORY[category], payload,
                                   self.preference_for(category))

    async def dispatch(self, task_kind: TaskKind, payload: Payload,
                       preference: DispatchPreference) -> DispatchResult:
        """Run a task against the primary, then at most once against the fallback.

        Returns:
            DispatchResult whose stream yields text chunks

        Raises:
            RateLimitExceededError: Every attempted model was at capacity
            ProviderError: Any attempt failed for another reason
        """
        attempts: List[Tuple[ProviderKind, str, bool]] = [
            (preference.primary_provider, preference.primary_model, False)]
        if preference.has_fallback:
            fallback = (preference.fallback_provider, preference.fallback_model)
            if fallback != (preference.primary_provider, preference.primary_model):
                attempts.append(fallback + (True,))

        self.dispatches += 1
        at_capacity = 0
        last_error: Optional[EarshotError] = None

        for provider_kind, model, is_fallback in attempts:
            label = f"{provider_kind.value}:{model}"
            if is_fallback:
                self.fallbacks += 1
                logger.info(f"Falling back to {label} for {task_kind.value} task")

            if not self.ledger.can_use(provider_kind, model):
                logger.info(f"{label} is at capacity, skipping")
                at_capacity += 1
                last_error = RateLimitExceededError(f"{label} is at its usage limit")
                continue

            if task_kind == TaskKind.VISION and not self._supports_vision(provider_kind, model):
                logger.warning(f"{label} does not support vision, skipping")
                last_error = ProviderError(f"{label} does not support vision", provider=provider_kind.value)
                continue

            try:
                response = await self._invoke(provider_kind, model, task_kind, payload)
            except ProviderError as e:
                if e.rate_limited:
                    at_capacity += 1
                logger.warning(f"{label} failed: {e}")
                last_error = e
                continue
            except Exception as e:
                logger.error(f"{label} raised unexpectedly: {e}", exc_info=True)
                last_error = ProviderError(str(e), provider=provider_kind.value)
                continue

            self._record(provider_kind, model, response)
            return DispatchResult(
                stream=normalize_stream(response.chunks, provider_kind),
                provider=provider_kind,
                model=model,
                transcription=response.transcription,
                used_fallback=is_fallback,
            )

        self.failures += 1
        if at_capacity == len(attempts):
            raise RateLimitExceededError(
                f"All configured models are at capacity for {task_kind.value} tasks")
        if isinstance(last_error, ProviderError):
            raise last_error
        raise ProviderError(last_error.message if last_error else "No provider attempted")

    def _supports_vision(self, provider_kind: ProviderKind, model: str) -> bool:
        descriptor = self.ledger.catalog.get(provider_kind, model)
        # Unknown models get the benefit of the doubt
        return descriptor is None or descriptor.supports_vision

    async def _invoke(self, provider_kind: ProviderKind, model: str, task_kind: TaskKind,
                      payload: Payload) -> ProviderResponse:
        provider = self.registry.get(provider_kind)
        if task_kind == TaskKind.TEXT:
            return await provider.generate_text(model, payload.prompt, payload.system_prompt,
                                                payload.options)
        if task_kind == TaskKind.VISION:
            return await provider.analyze_image(model, payload.image_base64, payload.prompt,
                                                payload.system_prompt, payload.options)
        if task_kind == TaskKind.AUDIO:
            return await provider.process_audio(model, payload.segment, payload.prompt,
                                                payload.system_prompt, payload.options)
        raise ProviderError(f"Unsupported task kind: {task_kind}")

    def _record(self, provider_kind: ProviderKind, model: str, response: ProviderResponse) -> None:
        try:
            self.ledger.record_usage(provider_kind, model, tokens=response.tokens,
                                     audio_seconds=response.audio_seconds)
            for delta in response.auxiliary_usage:
                self.ledger.record_usage(provider_kind, delta.model, tokens=delta.tokens,
                                         audio_seconds=delta.audio_seconds)
        except EarshotError as e:
            logger.error(f"Failed to record usage for {provider_kind.value}:{model}: {e}")
