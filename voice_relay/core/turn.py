"""
Turn-taking state machine for a voice session.

Phases:
    Idle -> Listening -> Thinking -> Speaking -> Idle

Speaking can also end through Interrupted (client barge-in), and every
phase can be closed. Illegal events raise InvalidTransitionError and leave
the phase untouched, which keeps at most one utterance in flight per
session.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ..protocol.errors import InvalidTransitionError, SessionNotFoundError

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Session phase."""

    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"
    INTERRUPTED = "interrupted"
    CLOSED = "closed"


class TurnEvent(str, Enum):
    """Events that drive phase transitions."""

    START_LISTENING = "start-listening"
    END_LISTENING = "end-listening"
    ABANDON = "abandon"
    REPLY_READY = "reply-ready"
    PLAYBACK_COMPLETE = "playback-complete"
    INTERRUPT = "interrupt"
    RESUME = "resume"
    CLOSE = "close"


TRANSITIONS: dict[tuple[Phase, TurnEvent], Phase] = {
    (Phase.IDLE, TurnEvent.START_LISTENING): Phase.LISTENING,
    (Phase.LISTENING, TurnEvent.END_LISTENING): Phase.THINKING,
    (Phase.LISTENING, TurnEvent.ABANDON): Phase.IDLE,
    (Phase.THINKING, TurnEvent.ABANDON): Phase.IDLE,
    (Phase.THINKING, TurnEvent.REPLY_READY): Phase.SPEAKING,
    (Phase.SPEAKING, TurnEvent.PLAYBACK_COMPLETE): Phase.IDLE,
    (Phase.SPEAKING, TurnEvent.ABANDON): Phase.IDLE,
    (Phase.SPEAKING, TurnEvent.INTERRUPT): Phase.INTERRUPTED,
    (Phase.INTERRUPTED, TurnEvent.RESUME): Phase.IDLE,
}

TransitionListener = Callable[[Phase, TurnEvent, Phase], None]


@dataclass(frozen=True)
class TurnResult:
    """Outcome of one completed utterance."""

    recognized_text: str
    reply_text: str
    audio_handle: str
    duration_ms: int
    mime_type: str = "audio/wav"


class TurnStateMachine:
    """
    Per-session phase tracker.

    Not thread-safe by itself: callers serialize access with the owning
    session's lock.
    """

    def __init__(
        self,
        session_id: str,
        on_transition: TransitionListener | None = None,
    ):
        self.session_id = session_id
        self._phase = Phase.IDLE
        self._result: TurnResult | None = None
        self._on_transition = on_transition

    @property
    def phase(self) -> Phase:
        """Current phase."""
        return self._phase

    @property
    def result(self) -> TurnResult | None:
        """TurnResult of the turn being spoken, if any."""
        return self._result

    @property
    def is_closed(self) -> bool:
        return self._phase is Phase.CLOSED

    def can(self, event: TurnEvent) -> bool:
        """Check whether an event is allowed in the current phase."""
        if event is TurnEvent.CLOSE:
            return True
        return (self._phase, event) in TRANSITIONS

    def require(self, event: TurnEvent) -> None:
        """Raise if the event is not allowed now, without changing anything."""
        if self._phase is Phase.CLOSED:
            raise SessionNotFoundError(self.session_id)
        if not self.can(event):
            raise InvalidTransitionError(self._phase.value, event.value)

    def start_listening(self) -> None:
        self._fire(TurnEvent.START_LISTENING)

    def end_listening(self) -> None:
        self._fire(TurnEvent.END_LISTENING)

    def abandon(self) -> None:
        """Drop the turn in progress (empty utterance, failed service or unplayable reply)."""
        self._fire(TurnEvent.ABANDON)
        self._result = None

    def reply_ready(self, result: TurnResult) -> None:
        """Attach the turn result and start speaking."""
        self._fire(TurnEvent.REPLY_READY)
        self._result = result

    def playback_complete(self) -> None:
        self._fire(TurnEvent.PLAYBACK_COMPLETE)
        self._result = None

    def interrupt(self) -> None:
        """Speaking -> Interrupted -> Idle."""
        self._fire(TurnEvent.INTERRUPT)
        self._result = None
        self._fire(TurnEvent.RESUME)

    def close(self) -> None:
        """Move to Closed from any phase. Idempotent."""
        if self._phase is Phase.CLOSED:
            return
        self._result = None
        self._apply(TurnEvent.CLOSE, Phase.CLOSED)

    def _fire(self, event: TurnEvent) -> None:
        self.require(event)
        self._apply(event, TRANSITIONS[(self._phase, event)])

    def _apply(self, event: TurnEvent, target: Phase) -> None:
        previous = self._phase
        self._phase = target
        logger.debug(
            f"Session {self.session_id}: {previous.value} --{event.value}--> {target.value}"
        )
        if self._on_transition is not None:
            self._on_transition(previous, event, target)
