"""Groq adapter: OpenAI-compatible streaming chat plus Whisper transcription."""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp

from ..audio.pcm import pcm16_to_wav, pcm16_duration_seconds
from ..errors import ProviderError
from ..models.audio import AudioSegment
from ..models.dispatch import ProviderKind
from ..models.usage import UsageDelta
from .base import AbstractProvider, ProviderResponse

logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
WHISPER_MODEL = "whisper-large-v3-turbo"
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=120, sock_connect=10)


def estimate_tokens(*texts: str) -> int:
    """Rough prompt size: about four characters per token."""
    return sum(len(t or "") for t in texts) // 4


class GroqProvider(AbstractProvider):
    """Groq cloud backend."""

    kind = ProviderKind.GROQ

    def __init__(self, api_key: str, base_url: Optional[str] = None):
        super().__init__(api_key, base_url or DEFAULT_BASE_URL)
        logger.info(f"GroqProvider initialized with base URL: {self.base_url}")

    @property
    def supports_vision(self) -> bool:
        return True

    @property
    def supports_streaming(self) -> bool:
        return True

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _error(self, message: str, status: Optional[int] = None) -> ProviderError:
        return ProviderError(message, provider=self.kind.value, status=status)

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def _stream_chat(self, model: str, messages: List[Dict[str, Any]],
                           options: Optional[Dict[str, Any]]) -> ProviderResponse:
        options = options or {}
        body = {
            "model": model,
            "messages": messages,
            "stream": True,
            "temperature": options.get("temperature", 0.7),
            "max_tokens": options.get("max_tokens", 1024),
        }

        session = aiohttp.ClientSession(timeout=REQUEST_TIMEOUT)
        try:
            response = await session.post(f"{self.base_url}/chat/completions",
                                          headers=self._headers(), json=body)
        except aiohttp.ClientError as e:
            await session.close()
            raise self._error(f"Groq request failed: {e}") from e

        if response.status != 200:
            error_text = await response.text()
            response.release()
            await session.close()
            raise self._error(f"Groq API error: {response.status} - {error_text}", response.status)

        prompt_text = " ".join(str(m.get("content", "")) for m in messages)
        return ProviderResponse(chunks=self._iter_events(session, response),
                                tokens=estimate_tokens(prompt_text))

    async def _iter_events(self, session: aiohttp.ClientSession,
                           response: aiohttp.ClientResponse) -> AsyncIterator[Dict[str, Any]]:
        """Parse server-sent events until ``[DONE]``."""
        try:
            async for raw_line in response.content:
                line = raw_line.decode("utf-8").strip()
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if data == "[DONE]":
                    break
                try:
                    yield json.loads(data)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping undecodable Groq event: {data[:80]}")
        except aiohttp.ClientError as e:
            raise self._error(f"Groq stream failed: {e}") from e
        finally:
            response.release()
            await session.close()

    @staticmethod
    def _messages(system_prompt: str, user_content: Any) -> List[Dict[str, Any]]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_content})
        return messages

    async def generate_text(self, model: str, prompt: str, system_prompt: str = "",
                            options: Optional[Dict[str, Any]] = None) -> ProviderResponse:
        logger.debug(f"Groq text request: model={model}, prompt={len(prompt)} chars")
        return await self._stream_chat(model, self._messages(system_prompt, prompt), options)

    async def analyze_image(self, model: str, image_base64: str, prompt: str,
                            system_prompt: str = "",
                            options: Optional[Dict[str, Any]] = None) -> ProviderResponse:
        content = [
            {"type": "text", "text": prompt},
            {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_base64}"}},
        ]
        logger.debug(f"Groq vision request: model={model}, image={len(image_base64)} b64 chars")
        return await self._stream_chat(model, self._messages(system_prompt, content), options)

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    async def transcribe(self, pcm16: bytes, sample_rate: int,
                         language: Optional[str] = None) -> str:
        """Transcribe raw PCM16 with Whisper and return the text."""
        form = aiohttp.FormData()
        form.add_field("file", pcm16_to_wav(pcm16, sample_rate),
                       filename="audio.wav", content_type="audio/wav")
        form.add_field("model", WHISPER_MODEL)
        form.add_field("response_format", "json")
        if language:
            form.add_field("language", language)

        try:
            async with aiohttp.ClientSession(timeout=REQUEST_TIMEOUT) as session:
                async with session.post(f"{self.base_url}/audio/transcriptions",
                                        headers=self._headers(), data=form) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise self._error(f"Groq transcription error: {response.status} - {error_text}",
                                          response.status)
                    result = await response.json()
        except aiohttp.ClientError as e:
            raise self._error(f"Groq transcription failed: {e}") from e

        return (result.get("text") or "").strip()

    async def process_audio(self, model: str, segment: AudioSegment, prompt: str,
                            system_prompt: str = "",
                            options: Optional[Dict[str, Any]] = None) -> ProviderResponse:
        options = options or {}
        pcm = segment.pcm
        seconds = pcm16_duration_seconds(pcm, segment.sample_rate)
        transcription = await self.transcribe(pcm, segment.sample_rate, options.get("language"))
        whisper_usage = UsageDelta(model=WHISPER_MODEL, audio_seconds=seconds)
        logger.info(f"Groq transcribed {seconds:.1f}s of audio: {transcription[:60]!r}")

        if not transcription:
            return ProviderResponse(chunks=_empty_stream(), transcription="",
                                    auxiliary_usage=[whisper_usage])

        user_content = f"{prompt}\n\n{transcription}" if prompt else transcription
        response = await self._stream_chat(model, self._messages(system_prompt, user_content), options)
        response.transcription = transcription
        response.auxiliary_usage.append(whisper_usage)
        return response

    async def validate_api_key(self) -> bool:
        try:
            async with aiohttp.ClientSession(timeout=REQUEST_TIMEOUT) as session:
                async with session.get(f"{self.base_url}/models", headers=self._headers()) as response:
                    if response.status in (401, 403):
                        return False
                    if response.status != 200:
                        raise self._error(f"Groq key check failed: {response.status}", response.status)
                    return True
        except aiohttp.ClientError as e:
            raise self._error(f"Groq key check failed: {e}") from e


async def _empty_stream() -> AsyncIterator[Dict[str, Any]]:
    return
    yield
