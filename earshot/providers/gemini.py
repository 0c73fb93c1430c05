"""Gemini adapter: buffered generateContent with inline image and audio data."""

import base64
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

from ..audio.pcm import pcm16_to_wav, pcm16_duration_seconds
from ..errors import ProviderError
from ..models.audio import AudioSegment
from ..models.dispatch import ProviderKind
from .base import AbstractProvider, ProviderResponse

logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=120, sock_connect=10)


class GeminiProvider(AbstractProvider):
    """Google Gemini backend.

    Replies arrive whole; the stream yields the single response document so
    the dispatcher sees the same shape as a one-chunk stream.
    """

    kind = ProviderKind.GEMINI

    def __init__(self, api_key: str, base_url: Optional[str] = None):
        super().__init__(api_key, base_url or DEFAULT_BASE_URL)
        logger.info(f"GeminiProvider initialized with base URL: {self.base_url}")

    @property
    def supports_vision(self) -> bool:
        return True

    @property
    def supports_streaming(self) -> bool:
        return False

    @property
    def supports_live_audio(self) -> bool:
        return True

    def _error(self, message: str, status: Optional[int] = None) -> ProviderError:
        return ProviderError(message, provider=self.kind.value, status=status)

    async def _generate(self, model: str, parts: List[Dict[str, Any]], system_prompt: str,
                        options: Optional[Dict[str, Any]]) -> ProviderResponse:
        options = options or {}
        body: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": options.get("temperature", 0.7),
                "maxOutputTokens": options.get("max_tokens", 1024),
            },
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        url = f"{self.base_url}/models/{model}:generateContent"
        try:
            async with aiohttp.ClientSession(timeout=REQUEST_TIMEOUT) as session:
                async with session.post(url, params={"key": self.api_key}, json=body) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise self._error(f"Gemini API error: {response.status} - {error_text}",
                                          response.status)
                    result = await response.json()
        except aiohttp.ClientError as e:
            raise self._error(f"Gemini request failed: {e}") from e

        usage = result.get("usageMetadata") or {}
        return ProviderResponse(chunks=_single(result), tokens=int(usage.get("totalTokenCount", 0)))

    async def generate_text(self, model: str, prompt: str, system_prompt: str = "",
                            options: Optional[Dict[str, Any]] = None) -> ProviderResponse:
        logger.debug(f"Gemini text request: model={model}, prompt={len(prompt)} chars")
        return await self._generate(model, [{"text": prompt}], system_prompt, options)

    async def analyze_image(self, model: str, image_base64: str, prompt: str,
                            system_prompt: str = "",
                            options: Optional[Dict[str, Any]] = None) -> ProviderResponse:
        parts = [
            {"inline_data": {"mime_type": "image/jpeg", "data": image_base64}},
            {"text": prompt},
        ]
        return await self._generate(model, parts, system_prompt, options)

    async def process_audio(self, model: str, segment: AudioSegment, prompt: str,
                            system_prompt: str = "",
                            options: Optional[Dict[str, Any]] = None) -> ProviderResponse:
        pcm = segment.pcm
        wav_b64 = base64.b64encode(pcm16_to_wav(pcm, segment.sample_rate)).decode("ascii")
        parts = [
            {"inline_data": {"mime_type": "audio/wav", "data": wav_b64}},
            {"text": prompt or "Respond to what is said in this audio."},
        ]
        response = await self._generate(model, parts, system_prompt, options)
        response.audio_seconds = pcm16_duration_seconds(pcm, segment.sample_rate)
        return response

    async def validate_api_key(self) -> bool:
        try:
            async with aiohttp.ClientSession(timeout=REQUEST_TIMEOUT) as session:
                async with session.get(f"{self.base_url}/models",
                                       params={"key": self.api_key}) as response:
                    if response.status in (400, 401, 403):
                        return False
                    if response.status != 200:
                        raise self._error(f"Gemini key check failed: {response.status}", response.status)
                    return True
        except aiohttp.ClientError as e:
            raise self._error(f"Gemini key check failed: {e}") from e


async def _single(document: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
    yield document
