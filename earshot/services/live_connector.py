"""Duplex live-session connector for the Gemini Live websocket API."""

import asyncio
import base64
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import ProviderError
from ..models.session import SessionParams

logger = logging.getLogger(__name__)


LIVE_ENDPOINT = ("wss://generativelanguage.googleapis.com/ws/"
                 "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent")

CLOSE_CODE_MEANINGS = {
    1000: "Normal closure",
    1001: "Going away",
    1006: "Abnormal closure (no close frame)",
    1007: "Invalid frame payload data",
    1008: "Policy violation",
    1011: "Internal server error",
}


def is_invalid_key_close(reason: Optional[str], code: Optional[int] = None) -> bool:
    """True when a close was caused by rejected credentials."""
    reason = (reason or "").lower()
    return "api key not valid" in reason or (code == 1008 and "api key" in reason)


@dataclass
class LiveHandlers:
    """Callbacks a live session invokes from its receive loop."""
    on_input_transcription: Callable[[str], None]
    on_model_text: Callable[[str], None]
    on_generation_complete: Callable[[], None]
    on_close: Callable[[str, Optional[int]], None]


class LiveSession(ABC):
    """An open duplex session."""

    @abstractmethod
    async def send_text(self, text: str) -> None:
        pass

    @abstractmethod
    async def send_audio(self, pcm16: bytes, sample_rate: int = 16000) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class LiveConnector(ABC):
    """Opens live sessions. ``on_close`` fires once per session, however it ends."""

    @abstractmethod
    async def connect(self, params: SessionParams, handlers: LiveHandlers) -> LiveSession:
        pass


class GeminiLiveSession(LiveSession):

    def __init__(self, websocket, handlers: LiveHandlers):
        self.websocket = websocket
        self.handlers = handlers
        self.setup_complete = asyncio.Event()
        self.receive_task: Optional[asyncio.Task] = None
        self._close_reported = False

    async def _send(self, message: Dict[str, Any]) -> None:
        try:
            await self.websocket.send(json.dumps(message))
        except ConnectionClosed as e:
            raise ProviderError(f"Live session closed: {e}", provider="gemini") from e

    async def send_text(self, text: str) -> None:
        await self._send({"realtimeInput": {"text": text}})

    async def send_audio(self, pcm16: bytes, sample_rate: int = 16000) -> None:
        await self._send({
            "realtimeInput": {
                "audio": {
                    "data": base64.b64encode(pcm16).decode("ascii"),
                    "mimeType": f"audio/pcm;rate={sample_rate}",
                }
            }
        })

    async def close(self) -> None:
        await self.websocket.close()
        if self.receive_task:
            await self.receive_task

    async def abort(self) -> None:
        """Close without reporting it. Used when setup never completed."""
        self._close_reported = True
        await self.close()

    async def receive_loop(self) -> None:
        reason, code = "", None
        try:
            async for message in self.websocket:
                try:
                    self._handle_message(json.loads(message))
                except json.JSONDecodeError as e:
                    logger.error(f"Failed to decode live message: {e}")
                except Exception as e:
                    logger.error(f"Error handling live message: {e}", exc_info=True)
            code = self.websocket.close_code
            reason = self.websocket.close_reason or ""
        except ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd else None
            reason = e.rcvd.reason if e.rcvd else ""
        finally:
            await self.websocket.close()
            logger.warning(f"Live session closed: code={code} "
                           f"({CLOSE_CODE_MEANINGS.get(code, 'Unknown')}), reason={reason!r}")
            self._report_close(reason, code)

    def _report_close(self, reason: str, code: Optional[int]) -> None:
        if self._close_reported:
            return
        self._close_reported = True
        try:
            self.handlers.on_close(reason, code)
        except Exception as e:
            logger.error(f"Error in live close handler: {e}", exc_info=True)

    def _handle_message(self, data: Dict[str, Any]) -> None:
        if "setupComplete" in data:
            self.setup_complete.set()
            return
        if "goAway" in data:
            logger.warning(f"Live server is going away: {data['goAway']}")
            return

        content = data.get("serverContent")
        if not content:
            return
        transcription = (content.get("inputTranscription") or {}).get("text")
        if transcription:
            self.handlers.on_input_transcription(transcription)
        for part in (content.get("modelTurn") or {}).get("parts", []):
            if part.get("text"):
                self.handlers.on_model_text(part["text"])
        if content.get("turnComplete"):
            self.handlers.on_generation_complete()


class GeminiLiveConnector(LiveConnector):
    """Connects to Gemini Live with text responses and input transcription."""

    def __init__(self, endpoint: str = LIVE_ENDPOINT, setup_timeout: float = 10.0):
        self.endpoint = endpoint
        self.setup_timeout = setup_timeout

    def _setup_message(self, params: SessionParams) -> Dict[str, Any]:
        setup: Dict[str, Any] = {
            "model": f"models/{params.model}",
            "generationConfig": {
                "responseModalities": ["TEXT"],
                "speechConfig": {"languageCode": params.language},
            },
            "inputAudioTranscription": {},
        }
        if params.instruction:
            setup["systemInstruction"] = {"parts": [{"text": params.instruction}]}
        return {"setup": setup}

    async def connect(self, params: SessionParams, handlers: LiveHandlers) -> LiveSession:
        url = f"{self.endpoint}?key={params.api_key}"
        try:
            websocket = await websockets.connect(url, max_size=10 * 1024 * 1024)
        except (OSError, WebSocketException) as e:
            response = getattr(e, "response", None)
            status = getattr(response, "status_code", None) or getattr(e, "status_code", None)
            raise ProviderError(f"Live connection failed: {e}", provider="gemini", status=status) from e

        session = GeminiLiveSession(websocket, handlers)
        session.receive_task = asyncio.ensure_future(session.receive_loop())
        try:
            await session._send(self._setup_message(params))
            await asyncio.wait_for(session.setup_complete.wait(), timeout=self.setup_timeout)
        except (ProviderError, asyncio.TimeoutError) as e:
            await session.abort()
            if isinstance(e, ProviderError):
                raise
            raise ProviderError("Live session setup timed out", provider="gemini") from e
        except asyncio.CancelledError:
            session._close_reported = True
            session.receive_task.cancel()
            raise

        logger.info(f"Live session established with model {params.model}")
        return session
