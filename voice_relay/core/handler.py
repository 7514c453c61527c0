"""
Per-connection protocol handler.

Maps inbound client events onto sessions, drives the turn state machine
and runs the transcribe -> reply -> synthesize pipeline for each finished
utterance. Every outbound event goes through a single ``emit`` callable.
"""

import asyncio
import logging
from typing import Awaitable, Callable
from uuid import uuid4

from ..observability.metrics import record_error, record_turn_outcome
from ..protocol.errors import (
    EmptyUtteranceError,
    InternalError,
    NoActiveSessionError,
    SessionNotFoundError,
    VoiceRelayError,
)
from ..protocol.messages import (
    AudioFragmentMessage,
    AudioResponseMessage,
    ClientMessage,
    DisconnectMessage,
    EndAudioMessage,
    ErrorKind,
    HeartbeatMessage,
    InterruptedMessage,
    InterruptMessage,
    ServerMessage,
    SessionEndReason,
    SessionReadyMessage,
    StartSessionMessage,
    TranscriptionMessage,
    TurnCompleteMessage,
)
from ..services.pipeline import VoicePipeline
from .accumulator import AudioChunkAccumulator
from .session import AudioFragment, Session, SessionRegistry
from .turn import Phase, TurnEvent, TurnResult

logger = logging.getLogger(__name__)

Emit = Callable[[ServerMessage], Awaitable[None]]


class SessionProtocolHandler:
    """
    Handles the events of one client connection.

    The connection may own several sessions. Binary audio frames carry no
    session id and go to the most recently started one.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        pipeline: VoicePipeline,
        emit: Emit,
        accumulator: AudioChunkAccumulator | None = None,
        connection_id: str | None = None,
    ):
        self.registry = registry
        self.pipeline = pipeline
        self.accumulator = accumulator or AudioChunkAccumulator(registry)
        self.connection_id = connection_id or uuid4().hex
        self._emit = emit
        self._session_ids: list[str] = []
        registry.subscribe_removals(self._session_removed)

    @property
    def session_ids(self) -> list[str]:
        """Sessions started on this connection and not yet removed."""
        return list(self._session_ids)

    async def handle(self, message: ClientMessage) -> bool:
        """
        Handle one inbound event.

        Returns:
            False once the client asked to disconnect, True otherwise
        """
        session_id = getattr(message, "session_id", None)
        try:
            if isinstance(message, StartSessionMessage):
                await self._start_session()
            elif isinstance(message, AudioFragmentMessage):
                await self._audio_fragment(message.session_id, message.audio)
            elif isinstance(message, EndAudioMessage):
                await self._end_audio(message.session_id)
            elif isinstance(message, InterruptMessage):
                await self._interrupt(message.session_id)
            elif isinstance(message, HeartbeatMessage):
                await self._heartbeat(message.session_id)
            elif isinstance(message, DisconnectMessage):
                await self.disconnect()
                return False
        except VoiceRelayError as e:
            await self.report_error(e, session_id)
        except Exception:
            logger.exception(f"Connection {self.connection_id}: unexpected error")
            await self.report_error(InternalError(), session_id)
        return True

    async def handle_audio_bytes(self, data: bytes) -> None:
        """Handle a raw audio frame for the most recent session."""
        session_id = self._session_ids[-1] if self._session_ids else None
        try:
            if session_id is None:
                raise NoActiveSessionError()
            await self._audio_fragment(session_id, data)
        except VoiceRelayError as e:
            await self.report_error(e, session_id)
        except Exception:
            logger.exception(f"Connection {self.connection_id}: unexpected error on audio frame")
            await self.report_error(InternalError(), session_id)

    async def disconnect(self) -> None:
        """Remove every session of this connection. Safe to call twice."""
        session_ids = list(self._session_ids)
        for session_id in session_ids:
            await self.registry.remove(session_id, SessionEndReason.DISCONNECTED)
        self._session_ids = []
        self.registry.unsubscribe_removals(self._session_removed)
        if session_ids:
            logger.info(
                f"Connection {self.connection_id}: closed {len(session_ids)} session(s)"
            )

    async def report_error(self, error: VoiceRelayError, session_id: str | None = None) -> None:
        """Send an error event to the client."""
        record_error(error.kind.value)
        logger.info(f"Session {session_id or '-'}: {error.kind.value}: {error.message}")
        await self._send(error.to_message(session_id))

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    async def _start_session(self) -> None:
        session = await self.registry.create(owner=self.connection_id)
        self._session_ids.append(session.session_id)
        await self._send(SessionReadyMessage(session_id=session.session_id))

    async def _audio_fragment(self, session_id: str, data: bytes) -> None:
        session = await self._owned_session(session_id)
        async with session.lock:
            session.touch()
            if session.phase is Phase.IDLE:
                session.turn.start_listening()
            await self.accumulator.append(session_id, AudioFragment(data=data))

    async def _end_audio(self, session_id: str) -> None:
        session = await self._owned_session(session_id)
        async with session.lock:
            session.touch()
            if session.phase is Phase.IDLE:
                session.turn.start_listening()
            session.turn.require(TurnEvent.END_LISTENING)

            try:
                audio = await self.accumulator.flush_and_clear(session_id)
            except EmptyUtteranceError:
                session.turn.abandon()
                record_turn_outcome("empty")
                raise

            session.turn.end_listening()
            turn_id = session.begin_turn()
            session.turn_task = asyncio.create_task(self._run_turn(session, turn_id, audio))
            logger.debug(f"Session {session_id}: turn {turn_id} started ({len(audio)} bytes)")

    async def _interrupt(self, session_id: str) -> None:
        session = await self._owned_session(session_id)
        async with session.lock:
            session.touch()
            session.turn.interrupt()
            session.cancel_playback()
            session.turns_interrupted += 1
            record_turn_outcome("interrupted")
            await self._send(InterruptedMessage(session_id=session_id))
        logger.info(f"Session {session_id}: reply interrupted")

    async def _heartbeat(self, session_id: str | None) -> None:
        if session_id is None:
            return
        session = await self._owned_session(session_id)
        session.touch()

    # -------------------------------------------------------------------------
    # Turn pipeline
    # -------------------------------------------------------------------------

    async def _run_turn(self, session: Session, turn_id: int, audio: bytes) -> None:
        session_id = session.session_id
        try:
            text = await self.pipeline.transcribe(audio)
            if not text.strip():
                raise EmptyUtteranceError("No speech was recognized")

            async with session.lock:
                if not session.is_turn_current(turn_id):
                    logger.debug(f"Session {session_id}: stale transcription discarded")
                    return
                await self._send(TranscriptionMessage(session_id=session_id, text=text))

            reply = await self.pipeline.generate_reply(text, session_id)
            synthesis = await self.pipeline.synthesize(reply)

            async with session.lock:
                if not session.is_turn_current(turn_id):
                    logger.debug(f"Session {session_id}: stale reply discarded")
                    return
                response = AudioResponseMessage(
                    session_id=session_id,
                    audio_handle=synthesis.audio_handle,
                    mime_type=synthesis.mime_type,
                    text=reply,
                    duration_ms=synthesis.duration_ms,
                )
                session.turn.reply_ready(
                    TurnResult(
                        recognized_text=text,
                        reply_text=reply,
                        audio_handle=synthesis.audio_handle,
                        duration_ms=synthesis.duration_ms,
                        mime_type=synthesis.mime_type,
                    )
                )
                await self._send(response)
                session.playback_task = asyncio.create_task(
                    self._complete_after(session, turn_id, synthesis.duration_ms / 1000)
                )
        except VoiceRelayError as e:
            outcome = "empty" if e.kind is ErrorKind.EMPTY_UTTERANCE else "failed"
            await self._fail_turn(session, turn_id, e, outcome)
        except Exception:
            logger.exception(f"Session {session_id}: turn {turn_id} failed")
            await self._fail_turn(session, turn_id, InternalError(), "failed")
        finally:
            if session.turn_task is asyncio.current_task():
                session.turn_task = None

    async def _fail_turn(
        self,
        session: Session,
        turn_id: int,
        error: VoiceRelayError,
        outcome: str,
    ) -> None:
        async with session.lock:
            if not session.is_turn_current(turn_id):
                return
            session.cancel_playback()
            if session.turn.can(TurnEvent.ABANDON):
                session.turn.abandon()
            record_turn_outcome(outcome)
            await self.report_error(error, session.session_id)

    async def _complete_after(self, session: Session, turn_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        async with session.lock:
            if session.playback_task is asyncio.current_task():
                session.playback_task = None
            if not session.is_turn_current(turn_id) or session.phase is not Phase.SPEAKING:
                return
            session.turn.playback_complete()
            session.turns_completed += 1
            record_turn_outcome("completed")
            await self._send(TurnCompleteMessage(session_id=session.session_id))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _session_removed(self, session: Session, reason: SessionEndReason) -> None:
        if session.owner != self.connection_id:
            return
        if session.session_id in self._session_ids:
            self._session_ids.remove(session.session_id)
        self.pipeline.forget(session.session_id)
        if reason is SessionEndReason.TIMEOUT:
            logger.info(f"Connection {self.connection_id}: session {session.session_id} timed out")

    async def _owned_session(self, session_id: str) -> Session:
        session = await self.registry.get(session_id)
        if session.owner != self.connection_id:
            raise SessionNotFoundError(session_id)
        return session

    async def _send(self, message: ServerMessage) -> None:
        try:
            await self._emit(message)
        except Exception as e:
            # Client might already be disconnected
            logger.debug(f"Connection {self.connection_id}: send failed: {e!r}")
