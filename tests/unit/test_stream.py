"""Unit tests for provider stream normalization."""

import pytest

from earshot.errors import ProviderError
from earshot.models.dispatch import ProviderKind
from earshot.providers.stream import EXTRACTORS, normalize_stream


async def from_list(items, fail_after=None):
    for i, item in enumerate(items):
        if fail_after is not None and i == fail_after:
            raise ConnectionResetError("peer went away")
        yield item


async def collect(stream):
    return [chunk async for chunk in stream]


@pytest.mark.unit
class TestNormalizeStream:

    def test_every_provider_has_an_extractor(self):
        assert set(EXTRACTORS) == set(ProviderKind)

    @pytest.mark.asyncio
    async def test_groq_deltas(self):
        chunks = [
            {"choices": [{"delta": {"role": "assistant"}}]},
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
            {"choices": []},
        ]
        assert await collect(normalize_stream(from_list(chunks), ProviderKind.GROQ)) == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_gemini_candidates_join_parts(self):
        chunks = [
            {"candidates": [{"content": {"parts": [{"text": "Python "}, {"text": "is"}]}}]},
            {"candidates": [{"content": {"parts": []}}]},
            {"usageMetadata": {"totalTokenCount": 12}},
        ]
        result = await collect(normalize_stream(from_list(chunks), ProviderKind.GEMINI))
        assert result == ["Python is"]

    @pytest.mark.asyncio
    async def test_plain_strings_pass_through(self):
        result = await collect(normalize_stream(from_list(["a", "", "b"]), ProviderKind.GEMINI))
        assert result == ["a", "b"]

    @pytest.mark.asyncio
    async def test_mid_stream_failure_becomes_provider_error(self):
        chunks = [{"choices": [{"delta": {"content": "partial"}}]}] * 3
        received = []

        with pytest.raises(ProviderError) as exc_info:
            async for chunk in normalize_stream(from_list(chunks, fail_after=1), ProviderKind.GROQ):
                received.append(chunk)

        assert received == ["partial"]
        assert exc_info.value.provider == "groq"

    @pytest.mark.asyncio
    async def test_provider_errors_are_not_rewrapped(self):
        async def failing():
            yield {"choices": [{"delta": {"content": "x"}}]}
            raise ProviderError("quota", provider="groq", status=429)

        with pytest.raises(ProviderError) as exc_info:
            await collect(normalize_stream(failing(), ProviderKind.GROQ))

        assert exc_info.value.rate_limited
