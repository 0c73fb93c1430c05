"""Provider adapters against local aiohttp servers that mimic the real APIs."""

import json

import pytest
from aiohttp import web
from aiohttp import test_utils

from earshot.errors import ProviderError
from earshot.models.dispatch import ProviderKind
from earshot.providers.gemini import GeminiProvider
from earshot.providers.groq import WHISPER_MODEL, GroqProvider
from earshot.providers.registry import ProviderRegistry
from earshot.providers.stream import normalize_stream


def sse(*pieces) -> bytes:
    events = [f"data: {json.dumps({'choices': [{'delta': {'content': p}}]})}\n\n" for p in pieces]
    return ("".join(events) + "data: [DONE]\n\n").encode()


class FakeGroqApi:
    """Chat completions over SSE plus Whisper transcriptions."""

    def __init__(self, transcription=" what is python "):
        self.transcription = transcription
        self.chat_bodies = []
        self.transcription_forms = []
        self.status = 200

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/chat/completions", self.chat)
        app.router.add_post("/audio/transcriptions", self.transcribe)
        app.router.add_get("/models", self.models)
        return app

    async def chat(self, request):
        if request.headers.get("Authorization") != "Bearer groq-key":
            return web.Response(status=401, text="invalid api key")
        if self.status != 200:
            return web.Response(status=self.status, text="rate limited")
        self.chat_bodies.append(await request.json())
        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        await response.write(sse("Py", "thon ", "is a language."))
        await response.write_eof()
        return response

    async def transcribe(self, request):
        form = await request.post()
        self.transcription_forms.append({"model": form["model"], "filename": form["file"].filename})
        return web.json_response({"text": self.transcription})

    async def models(self, request):
        if request.headers.get("Authorization") != "Bearer groq-key":
            return web.Response(status=401)
        return web.json_response({"data": []})


class FakeGeminiApi:

    def __init__(self):
        self.bodies = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/models/{target}", self.generate)
        return app

    async def generate(self, request):
        if request.query.get("key") != "gemini-key":
            return web.Response(status=400, text="API key not valid")
        self.bodies.append((request.match_info["target"], await request.json()))
        return web.json_response({
            "candidates": [{"content": {"parts": [{"text": "A snake"}, {"text": " or a language."}]}}],
            "usageMetadata": {"totalTokenCount": 42},
        })


def base_url(server) -> str:
    return f"http://{server.host}:{server.port}"


async def text_of(response, kind):
    return "".join([piece async for piece in normalize_stream(response.chunks, kind)])


@pytest.mark.unit
class TestGroqProvider:

    @pytest.mark.asyncio
    async def test_streams_chat_completion(self):
        api = FakeGroqApi()
        async with test_utils.TestServer(api.app()) as server:
            provider = GroqProvider("groq-key", base_url(server))
            response = await provider.generate_text("llama-3.3-70b-versatile", "What is Python?",
                                                    system_prompt="Be brief")
            text = await text_of(response, ProviderKind.GROQ)

        assert text == "Python is a language."
        body = api.chat_bodies[0]
        assert body["stream"] is True
        assert body["messages"][0] == {"role": "system", "content": "Be brief"}
        assert body["messages"][1] == {"role": "user", "content": "What is Python?"}
        assert response.tokens > 0

    @pytest.mark.asyncio
    async def test_bad_key_raises_with_status(self):
        async with test_utils.TestServer(FakeGroqApi().app()) as server:
            provider = GroqProvider("wrong", base_url(server))
            with pytest.raises(ProviderError) as exc_info:
                await provider.generate_text("llama-3.3-70b-versatile", "hi")

        assert exc_info.value.status == 401
        assert exc_info.value.auth_failed

    @pytest.mark.asyncio
    async def test_rate_limited_response(self):
        api = FakeGroqApi()
        api.status = 429
        async with test_utils.TestServer(api.app()) as server:
            with pytest.raises(ProviderError) as exc_info:
                await GroqProvider("groq-key", base_url(server)).generate_text("m", "hi")

        assert exc_info.value.rate_limited

    @pytest.mark.asyncio
    async def test_audio_is_transcribed_then_answered(self, make_segment):
        api = FakeGroqApi()
        async with test_utils.TestServer(api.app()) as server:
            provider = GroqProvider("groq-key", base_url(server))
            response = await provider.process_audio("llama-3.3-70b-versatile", make_segment(50),
                                                    prompt="Answer the interview question")
            text = await text_of(response, ProviderKind.GROQ)

        assert response.transcription == "what is python"
        assert text == "Python is a language."
        assert api.transcription_forms == [{"model": WHISPER_MODEL, "filename": "audio.wav"}]
        user_message = api.chat_bodies[0]["messages"][-1]["content"]
        assert user_message == "Answer the interview question\n\nwhat is python"
        assert response.auxiliary_usage[0].model == WHISPER_MODEL
        assert response.auxiliary_usage[0].audio_seconds == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_silent_audio_skips_chat(self, make_segment):
        api = FakeGroqApi(transcription="")
        async with test_utils.TestServer(api.app()) as server:
            provider = GroqProvider("groq-key", base_url(server))
            response = await provider.process_audio("llama-3.3-70b-versatile", make_segment(10), "")
            text = await text_of(response, ProviderKind.GROQ)

        assert text == ""
        assert response.transcription == ""
        assert api.chat_bodies == []
        assert len(response.auxiliary_usage) == 1

    @pytest.mark.asyncio
    async def test_validate_api_key(self):
        async with test_utils.TestServer(FakeGroqApi().app()) as server:
            assert await GroqProvider("groq-key", base_url(server)).validate_api_key()
            assert not await GroqProvider("nope", base_url(server)).validate_api_key()


@pytest.mark.unit
class TestGeminiProvider:

    @pytest.mark.asyncio
    async def test_generate_text(self):
        api = FakeGeminiApi()
        async with test_utils.TestServer(api.app()) as server:
            provider = GeminiProvider("gemini-key", base_url(server))
            response = await provider.generate_text("gemini-2.5-flash", "What is a python?",
                                                    system_prompt="Be brief")
            text = await text_of(response, ProviderKind.GEMINI)

        assert text == "A snake or a language."
        assert response.tokens == 42
        target, body = api.bodies[0]
        assert target == "gemini-2.5-flash:generateContent"
        assert body["systemInstruction"]["parts"][0]["text"] == "Be brief"
        assert body["contents"][0]["parts"] == [{"text": "What is a python?"}]

    @pytest.mark.asyncio
    async def test_image_is_sent_inline(self):
        api = FakeGeminiApi()
        async with test_utils.TestServer(api.app()) as server:
            provider = GeminiProvider("gemini-key", base_url(server))
            await provider.analyze_image("gemini-2.5-flash", "aGVsbG8=", "What is on screen?")

        parts = api.bodies[0][1]["contents"][0]["parts"]
        assert parts[0] == {"inline_data": {"mime_type": "image/jpeg", "data": "aGVsbG8="}}

    @pytest.mark.asyncio
    async def test_audio_reports_duration(self, make_segment):
        api = FakeGeminiApi()
        async with test_utils.TestServer(api.app()) as server:
            provider = GeminiProvider("gemini-key", base_url(server))
            response = await provider.process_audio("gemini-2.5-flash", make_segment(25), "")

        assert response.audio_seconds == pytest.approx(0.5)
        parts = api.bodies[0][1]["contents"][0]["parts"]
        assert parts[0]["inline_data"]["mime_type"] == "audio/wav"

    @pytest.mark.asyncio
    async def test_bad_key(self):
        async with test_utils.TestServer(FakeGeminiApi().app()) as server:
            with pytest.raises(ProviderError) as exc_info:
                await GeminiProvider("wrong", base_url(server)).generate_text("gemini-2.5-flash", "hi")

        assert exc_info.value.status == 400


@pytest.mark.unit
class TestProviderRegistry:

    def test_builds_adapters_from_keys(self):
        registry = ProviderRegistry({"groq": "k1"}, {"groq": "http://localhost:9"})
        provider = registry.get(ProviderKind.GROQ)

        assert isinstance(provider, GroqProvider)
        assert provider.base_url == "http://localhost:9"
        assert registry.get("groq") is provider

    def test_missing_key(self):
        with pytest.raises(ProviderError):
            ProviderRegistry().get(ProviderKind.GEMINI)

    def test_set_api_key_rebuilds_adapter(self):
        registry = ProviderRegistry({"gemini": "old"})
        old = registry.get(ProviderKind.GEMINI)
        registry.set_api_key(ProviderKind.GEMINI, "new")
        new = registry.get(ProviderKind.GEMINI)

        assert new is not old
        assert new.api_key == "new"
