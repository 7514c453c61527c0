"""
Session management for the voice relay.

Implements:
- Voice session with turn state, pending audio and per-session lock
- Registry owning the id -> session map (create / get / remove)
- Background reaping of idle sessions
- Removal listeners, told about every session that leaves the registry
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable
from uuid import uuid4

from ..config import settings
from ..observability.metrics import (
    record_phase_transition,
    record_session_ended,
    update_session_metrics,
)
from ..protocol.errors import MaxSessionsReachedError, SessionNotFoundError
from ..protocol.messages import SessionEndReason
from .turn import Phase, TurnStateMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioFragment:
    """One chunk of streamed audio and its arrival time."""

    data: bytes
    received_at: float = field(default_factory=time.monotonic)


@dataclass
class Session:
    """
    One client's conversation.

    Phase changes happen only while holding ``lock``. ``turn_id`` lets a
    pipeline task detect that its turn was superseded or closed while it
    was waiting on an external service.
    """

    session_id: str
    owner: str | None = None

    pending_audio: list[AudioFragment] = field(default_factory=list, init=False)
    turn: TurnStateMachine = field(init=False)
    turn_id: int = field(default=0, init=False)
    turn_task: asyncio.Task | None = field(default=None, init=False, repr=False)
    playback_task: asyncio.Task | None = field(default=None, init=False, repr=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    # Session timing
    created_at: float = field(default_factory=time.monotonic, init=False)
    last_activity_at: float = field(default_factory=time.monotonic, init=False)

    # Metrics
    turns_completed: int = field(default=0, init=False)
    turns_interrupted: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        self.turn = TurnStateMachine(self.session_id, on_transition=record_phase_transition)

    @property
    def phase(self) -> Phase:
        return self.turn.phase

    @property
    def is_closed(self) -> bool:
        return self.turn.is_closed

    @property
    def idle_seconds(self) -> float:
        return time.monotonic() - self.last_activity_at

    def touch(self) -> None:
        """Record client activity."""
        self.last_activity_at = time.monotonic()

    def begin_turn(self) -> int:
        """Start a new turn id; earlier pipeline results become stale."""
        self.turn_id += 1
        return self.turn_id

    def is_turn_current(self, turn_id: int) -> bool:
        """Check if a turn is still valid (not superseded or closed)."""
        return not self.is_closed and self.turn_id == turn_id

    def cancel_playback(self) -> None:
        """Cancel the scheduled turn-complete, if any."""
        task = self.playback_task
        self.playback_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def close(self) -> None:
        """Release everything the session holds. Idempotent."""
        if self.is_closed:
            return
        self.turn.close()
        self.pending_audio.clear()
        self.cancel_playback()
        task = self.turn_task
        self.turn_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def get_metrics(self) -> dict:
        """Get session-level metrics."""
        return {
            "session_id": self.session_id,
            "phase": self.phase.value,
            "turns": self.turn_id,
            "turns_completed": self.turns_completed,
            "turns_interrupted": self.turns_interrupted,
            "session_duration_seconds": round(time.monotonic() - self.created_at, 2),
        }


RemoveListener = Callable[[Session, SessionEndReason], None]


class SessionRegistry:
    """
    Owns the id -> session map.

    create/remove/reap are serialized by one asyncio lock; get reads the
    map without awaiting, so it always sees a consistent state.
    """

    def __init__(
        self,
        max_sessions: int | None = None,
        idle_timeout_seconds: float | None = None,
        reap_interval_seconds: float | None = None,
    ):
        """
        Initialize session registry.

        Args:
            max_sessions: Maximum concurrent sessions
            idle_timeout_seconds: Idle time after which a session is reaped
            reap_interval_seconds: Interval between reaping passes
        """
        self.max_sessions = settings.max_sessions if max_sessions is None else max_sessions
        self.idle_timeout_seconds = (
            settings.session_idle_timeout_seconds
            if idle_timeout_seconds is None
            else idle_timeout_seconds
        )
        self.reap_interval_seconds = (
            settings.reap_interval_seconds
            if reap_interval_seconds is None
            else reap_interval_seconds
        )
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._reaper_task: asyncio.Task | None = None
        self._remove_listeners: list[RemoveListener] = []

    def subscribe_removals(self, listener: RemoveListener) -> None:
        """Call listener(session, reason) for every session that leaves the registry."""
        self._remove_listeners.append(listener)

    def unsubscribe_removals(self, listener: RemoveListener) -> None:
        if listener in self._remove_listeners:
            self._remove_listeners.remove(listener)

    def _notify_removed(self, session: Session, reason: SessionEndReason) -> None:
        for listener in list(self._remove_listeners):
            try:
                listener(session, reason)
            except Exception:
                logger.exception(f"Session {session.session_id}: removal listener failed")

    def start(self) -> None:
        """Start background reaping task."""
        if self._reaper_task is None:
            self._reaper_task = asyncio.create_task(self._reap_loop())
            logger.info("Session reaper started")

    async def stop(self) -> None:
        """Stop reaping and close all sessions."""
        if self._reaper_task is not None:
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None
            logger.info("Session reaper stopped")

        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
            record_session_ended(SessionEndReason.SHUTDOWN.value)
            self._notify_removed(session, SessionEndReason.SHUTDOWN)
        update_session_metrics(0)

    async def _reap_loop(self) -> None:
        """Periodically remove idle sessions."""
        while True:
            try:
                await asyncio.sleep(self.reap_interval_seconds)
                await self.reap_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Error in session reaper: {e}")

    async def reap_expired(self) -> list[str]:
        """Remove sessions idle longer than the timeout. Returns removed ids."""
        async with self._lock:
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if session.idle_seconds > self.idle_timeout_seconds
            ]
            for session_id in expired:
                session = self._sessions.pop(session_id)
                session.close()
                record_session_ended(SessionEndReason.TIMEOUT.value)
                self._notify_removed(session, SessionEndReason.TIMEOUT)
                logger.info(f"Session {session_id} expired and removed")

            if expired:
                update_session_metrics(len(self._sessions))
                logger.info(f"Reaped {len(expired)} idle sessions")
            return expired

    async def create(self, owner: str | None = None) -> Session:
        """
        Create a new session in the Idle phase.

        Args:
            owner: Connection identifier that owns the session

        Raises:
            MaxSessionsReachedError: If at capacity
        """
        async with self._lock:
            if len(self._sessions) >= self.max_sessions:
                raise MaxSessionsReachedError(self.max_sessions)

            session_id = uuid4().hex
            while session_id in self._sessions:
                session_id = uuid4().hex

            session = Session(session_id=session_id, owner=owner)
            self._sessions[session_id] = session
            update_session_metrics(len(self._sessions))
            logger.info(f"Session {session_id} created (total: {len(self._sessions)})")
            return session

    async def get(self, session_id: str) -> Session:
        """
        Get session by ID.

        Raises:
            SessionNotFoundError: If absent or already closed
        """
        session = self._sessions.get(session_id)
        if session is None or session.is_closed:
            raise SessionNotFoundError(session_id)
        return session

    async def remove(
        self,
        session_id: str,
        reason: SessionEndReason = SessionEndReason.DISCONNECTED,
    ) -> Session | None:
        """
        Remove and close a session. Removing twice is a no-op.

        Returns:
            Removed session or None if it was already gone
        """
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return None
            session.close()
            update_session_metrics(len(self._sessions))

        record_session_ended(reason.value)
        self._notify_removed(session, reason)
        logger.info(
            f"Session {session_id} removed: {reason.value} (total: {len(self._sessions)})"
        )
        return session

    @property
    def active_sessions(self) -> int:
        """Number of active sessions."""
        return len(self._sessions)

    def get_all_sessions(self) -> list[Session]:
        """Get all active sessions."""
        return list(self._sessions.values())
