"""Session continuity manager: keeps a duplex live session alive across drops."""

import time
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple

from ..errors import EarshotError, NoActiveSessionError, ProviderError
from ..models.events import ReplyEvent, SessionStatus, SessionStatusEvent
from ..models.session import SessionParams, SessionPhase, SessionState
from .conversation import ConversationLog
from .live_connector import LiveConnector, LiveHandlers, LiveSession, is_invalid_key_close

logger = logging.getLogger(__name__)


class SessionContinuityManager:
    """Owns one long-lived live session.

    Lifecycle::

        CLOSED -> CONNECTING -> OPEN -> (CLOSED | RECONNECTING) -> OPEN | CLOSED

    An unexpected close triggers up to ``max_attempts`` reconnects with the
    original parameters, each after ``reconnect_delay`` seconds. After a
    successful reconnect the recent transcript is replayed to the model. The
    attempt counter is reset by ``initialize()`` or when the dropped session
    had been up for at least ``stability_window`` seconds.
    """

    def __init__(self,
                 connector: LiveConnector,
                 conversation: Optional[ConversationLog] = None,
                 max_attempts: int = 3,
                 reconnect_delay: float = 2.0,
                 context_turns: int = 20,
                 connect_timeout: float = 15.0,
                 stability_window: float = 60.0,
                 on_status: Optional[Callable[[SessionStatusEvent], None]] = None,
                 on_reply: Optional[Callable[[ReplyEvent], None]] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.connector = connector
        self.conversation = conversation or ConversationLog()
        self.reconnect_delay = reconnect_delay
        self.context_turns = context_turns
        self.connect_timeout = connect_timeout
        self.stability_window = stability_window
        self.on_status = on_status
        self.on_reply = on_reply
        self.sleep = sleep
        self.clock = clock

        self.state = SessionState(max_attempts=max_attempts)
        self.session: Optional[LiveSession] = None
        self.reconnect_task: Optional[asyncio.Task] = None

        self._generation = 0
        self._connecting = False
        self._close_during_connect: Optional[Tuple[str, Optional[int]]] = None
        self._opened_at: Optional[float] = None
        self._turns = 0
        self._transcription_buffer = ""
        self._response_buffer = ""

    @property
    def is_open(self) -> bool:
        return self.state.is_open and self.session is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def initialize(self, params: SessionParams) -> None:
        """Open a session, replacing any existing one.

        Raises:
            ProviderError: If the first connection attempt fails
        """
        await self._cancel_reconnect()
        if self.session is not None:
            await self._close_session()

        self.state.last_params = params
        self.state.reconnect_attempts = 0
        self.state.is_user_initiated_close = False
        self.state.phase = SessionPhase.CONNECTING
        logger.info(f"Initializing live session with model {params.model}")

        try:
            self.session = await self._open(params)
        except (EarshotError, asyncio.TimeoutError, OSError) as e:
            self.state.phase = SessionPhase.CLOSED
            logger.error(f"Live session failed to open: {e}")
            if isinstance(e, ProviderError):
                raise
            raise ProviderError(f"Live session failed to open: {e}", provider="gemini") from e

        self._mark_open()
        self._emit_status(SessionStatus.CONNECTED)

    async def close(self) -> None:
        """Close by user request. No reconnect happens afterwards."""
        self.state.is_user_initiated_close = True
        await self._cancel_reconnect()
        await self._close_session()
        self.state.phase = SessionPhase.CLOSED
        logger.info("Live session closed by user")
        self._emit_status(SessionStatus.CLOSED)

    async def send_text(self, text: str) -> None:
        if not self.is_open:
            raise NoActiveSessionError("No active live session")
        await self.session.send_text(text)

    async def send_audio(self, pcm16: bytes, sample_rate: int = 16000) -> None:
        if not self.is_open:
            raise NoActiveSessionError("No active live session")
        await self.session.send_audio(pcm16, sample_rate)

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _open(self, params: SessionParams) -> LiveSession:
        self._generation += 1
        generation = self._generation
        handlers = LiveHandlers(
            on_input_transcription=lambda text: self._on_input_transcription(generation, text),
            on_model_text=lambda text: self._on_model_text(generation, text),
            on_generation_complete=lambda: self._on_generation_complete(generation),
            on_close=lambda reason, code: self._on_session_closed(generation, reason, code),
        )
        self._connecting = True
        self._close_during_connect = None
        try:
            session = await asyncio.wait_for(self.connector.connect(params, handlers),
                                             timeout=self.connect_timeout)
        except BaseException:
            # Late callbacks from a failed attempt must not be acted on
            self._generation += 1
            raise
        finally:
            self._connecting = False

        if self._close_during_connect is not None:
            reason, code = self._close_during_connect
            self._generation += 1
            status = 403 if is_invalid_key_close(reason, code) else None
            raise ProviderError(f"Live session closed during setup (code={code}, reason={reason!r})",
                                provider="gemini", status=status)
        return session

    def _mark_open(self) -> None:
        self.state.phase = SessionPhase.OPEN
        self._opened_at = self.clock()
        self._transcription_buffer = ""
        self._response_buffer = ""

    async def _close_session(self) -> None:
        session, self.session = self.session, None
        self._opened_at = None
        self._generation += 1
        if session is None:
            return
        try:
            await session.close()
        except (EarshotError, OSError) as e:
            logger.warning(f"Error closing live session: {e}")

    async def _cancel_reconnect(self) -> None:
        task, self.reconnect_task = self.reconnect_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _on_session_closed(self, generation: int, reason: str, code: Optional[int]) -> None:
        if generation != self._generation:
            logger.debug(f"Ignoring close of stale session (generation {generation})")
            return
        if self._connecting:
            # The pending connect attempt fails with this close
            self._close_during_connect = (reason, code)
            return
        self.session = None
        opened_at, self._opened_at = self._opened_at, None

        if self.state.is_user_initiated_close:
            self.state.phase = SessionPhase.CLOSED
            return

        if is_invalid_key_close(reason, code):
            logger.error(f"Live session rejected the API key, not reconnecting: {reason}")
            self.state.phase = SessionPhase.CLOSED
            self._emit_status(SessionStatus.RECONNECT_FAILED, message="Invalid API key")
            return

        if opened_at is not None and self.state.reconnect_attempts:
            uptime = self.clock() - opened_at
            if uptime >= self.stability_window:
                logger.info(f"Session was stable for {uptime:.0f}s, resetting reconnect attempts")
                self.state.reconnect_attempts = 0

        logger.warning(f"Live session dropped unexpectedly (code={code}, reason={reason!r})")
        self.state.phase = SessionPhase.RECONNECTING
        if self.reconnect_task is not None and not self.reconnect_task.done():
            # The running reconnect loop picks this up after priming
            return
        self.reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        params = self.state.last_params
        while self.state.reconnect_attempts < self.state.max_attempts:
            if self.state.is_user_initiated_close:
                return
            self.state.reconnect_attempts += 1
            attempt = self.state.reconnect_attempts
            self._emit_status(SessionStatus.RECONNECTING, attempt=attempt)
            logger.info(f"Reconnect attempt {attempt}/{self.state.max_attempts} "
                        f"in {self.reconnect_delay}s")

            await self.sleep(self.reconnect_delay)
            if self.state.is_user_initiated_close:
                return

            try:
                session = await self._open(params)
            except (EarshotError, asyncio.TimeoutError, OSError) as e:
                logger.warning(f"Reconnect attempt {attempt} failed: {e}")
                if isinstance(e, ProviderError) and e.auth_failed:
                    break
                continue

            self.session = session
            self._mark_open()
            logger.info(f"Reconnected on attempt {attempt}")
            self._emit_status(SessionStatus.RECONNECTED, attempt=attempt)
            await self._prime_context()
            if self.session is None:
                if self.state.phase != SessionPhase.RECONNECTING:
                    return
                logger.warning(f"Session dropped again right after reconnect attempt {attempt}")
                continue
            return

        self.state.phase = SessionPhase.CLOSED
        logger.error(f"Giving up after {self.state.reconnect_attempts} reconnect attempts")
        self._emit_status(SessionStatus.RECONNECT_FAILED, attempt=self.state.reconnect_attempts,
                          message="Reconnection failed")

    async def _prime_context(self) -> None:
        message = self.conversation.build_context_message(self.context_turns)
        if not message or self.session is None:
            return
        try:
            await self.session.send_text(message)
            logger.info(f"Replayed context of {len(self.conversation.recent(self.context_turns))} "
                        f"turns to the new session")
        except (EarshotError, OSError) as e:
            logger.warning(f"Failed to replay context after reconnect: {e}")

    # ------------------------------------------------------------------
    # Session callbacks
    # ------------------------------------------------------------------

    def _on_input_transcription(self, generation: int, text: str) -> None:
        if generation == self._generation:
            self._transcription_buffer += text

    def _on_model_text(self, generation: int, text: str) -> None:
        if generation != self._generation:
            return
        self._response_buffer += text
        self._emit_reply(text=text)

    def _on_generation_complete(self, generation: int) -> None:
        if generation != self._generation:
            return
        transcription = self._transcription_buffer.strip()
        self.conversation.save_turn(transcription, self._response_buffer)
        self._emit_reply(final=True, transcription=transcription)
        self._turns += 1
        self._transcription_buffer = ""
        self._response_buffer = ""

    def _emit_reply(self, text: str = "", final: bool = False,
                    transcription: Optional[str] = None) -> None:
        if not self.on_reply:
            return
        params = self.state.last_params
        event = ReplyEvent(
            request_id=f"live-{self._turns + 1}",
            text=text,
            final=final,
            provider="gemini",
            model=params.model if params else None,
            transcription=transcription,
        )
        try:
            self.on_reply(event)
        except Exception as e:
            logger.error(f"Error in reply callback: {e}", exc_info=True)

    def _emit_status(self, status: SessionStatus, attempt: int = 0, message: str = "") -> None:
        event = SessionStatusEvent(status=status, attempt=attempt,
                                   max_attempts=self.state.max_attempts, message=message)
        logger.info(f"Session status: {event.label}")
        if not self.on_status:
            return
        try:
            self.on_status(event)
        except Exception as e:
            logger.error(f"Error in status callback: {e}", exc_info=True)
