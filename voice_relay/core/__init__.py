"""Core session, turn and audio handling."""

from .accumulator import AudioChunkAccumulator
from .handler import SessionProtocolHandler
from .session import AudioFragment, Session, SessionRegistry
from .turn import Phase, TurnEvent, TurnResult, TurnStateMachine

__all__ = [
    "AudioChunkAccumulator",
    "AudioFragment",
    "Phase",
    "Session",
    "SessionProtocolHandler",
    "SessionRegistry",
    "TurnEvent",
    "TurnResult",
    "TurnStateMachine",
]
