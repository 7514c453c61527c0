"""
Audio fragment accumulation for the utterance in progress.

Fragments are buffered on the session they belong to, addressed by
session id, so only one accumulation window per session exists. Order of
append calls is the order of concatenation: the transport delivers audio
in send order and no reordering by timestamp is attempted.
"""

import logging

from ..config import settings
from ..protocol.errors import (
    BufferOverflowError,
    EmptyUtteranceError,
    NoActiveSessionError,
)
from .session import AudioFragment, SessionRegistry
from .turn import Phase

logger = logging.getLogger(__name__)


class AudioChunkAccumulator:
    """Per-session ordered audio buffer with an upper size bound."""

    def __init__(self, registry: SessionRegistry, max_utterance_bytes: int | None = None):
        self._registry = registry
        self.max_utterance_bytes = (
            settings.max_utterance_bytes if max_utterance_bytes is None else max_utterance_bytes
        )

    async def append(self, session_id: str, fragment: AudioFragment) -> int:
        """
        Append a fragment to the session's utterance.

        Returns:
            Total bytes buffered for the utterance

        Raises:
            SessionNotFoundError: Unknown or closed session
            NoActiveSessionError: Session is not listening
            BufferOverflowError: Fragment would exceed the utterance limit
        """
        session = await self._registry.get(session_id)
        if session.phase is not Phase.LISTENING:
            raise NoActiveSessionError(session_id, session.phase.value)

        buffered = self._buffered_bytes(session.pending_audio)
        total = buffered + len(fragment.data)
        if total > self.max_utterance_bytes:
            logger.warning(f"Session {session_id}: utterance buffer full ({buffered} bytes)")
            raise BufferOverflowError(total, self.max_utterance_bytes)

        session.pending_audio.append(fragment)
        return total

    async def flush_and_clear(self, session_id: str) -> bytes:
        """
        Return the whole utterance and reset the buffer.

        Raises:
            SessionNotFoundError: Unknown or closed session
            EmptyUtteranceError: Nothing was appended
        """
        session = await self._registry.get(session_id)
        fragments = session.pending_audio
        if not fragments:
            raise EmptyUtteranceError()

        audio = b"".join(fragment.data for fragment in fragments)
        logger.debug(
            f"Session {session_id}: flushed {len(fragments)} fragments ({len(audio)} bytes)"
        )
        session.pending_audio = []
        return audio

    async def pending_bytes(self, session_id: str) -> int:
        """Bytes currently buffered for the session."""
        session = await self._registry.get(session_id)
        return self._buffered_bytes(session.pending_audio)

    @staticmethod
    def _buffered_bytes(fragments: list[AudioFragment]) -> int:
        return sum(len(fragment.data) for fragment in fragments)
