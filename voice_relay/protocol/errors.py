"""Custom exceptions for the voice relay."""

from .messages import ErrorKind, ErrorMessage


class VoiceRelayError(Exception):
    """Base exception for voice relay errors."""

    def __init__(self, kind: ErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)

    def to_message(self, session_id: str | None = None) -> ErrorMessage:
        """Build the outbound error event for this error."""
        return ErrorMessage(kind=self.kind, message=self.message, session_id=session_id)


class SessionNotFoundError(VoiceRelayError):
    """Raised when a session is absent or already closed."""

    def __init__(self, session_id: str):
        super().__init__(
            ErrorKind.SESSION_NOT_FOUND,
            f"Session '{session_id}' not found",
        )
        self.session_id = session_id


class InvalidTransitionError(VoiceRelayError):
    """Raised when an event is not allowed in the current phase."""

    def __init__(self, phase: str, event: str):
        super().__init__(
            ErrorKind.INVALID_TRANSITION,
            f"Cannot {event} while {phase}",
        )
        self.phase = phase
        self.event = event


class EmptyUtteranceError(VoiceRelayError):
    """Raised when a turn ends without any usable audio."""

    def __init__(self, message: str = "No audio was received for this utterance"):
        super().__init__(ErrorKind.EMPTY_UTTERANCE, message)


class NoActiveSessionError(VoiceRelayError):
    """Raised when audio arrives for a session that is not listening."""

    def __init__(self, session_id: str | None = None, phase: str | None = None):
        if session_id is None:
            message = "No active session"
        else:
            message = f"Session '{session_id}' is not listening (phase: {phase})"
        super().__init__(ErrorKind.NO_ACTIVE_SESSION, message)


class BufferOverflowError(VoiceRelayError):
    """Raised when an utterance exceeds the audio buffer limit."""

    def __init__(self, buffered_bytes: int, max_bytes: int):
        super().__init__(
            ErrorKind.BUFFER_OVERFLOW,
            f"Utterance too long: {buffered_bytes} > {max_bytes} bytes",
        )


class MaxSessionsReachedError(VoiceRelayError):
    """Raised when maximum session limit is reached."""

    def __init__(self, max_sessions: int):
        super().__init__(
            ErrorKind.MAX_SESSIONS_REACHED,
            f"Maximum sessions ({max_sessions}) reached",
        )


class TranscriptionFailedError(VoiceRelayError):
    """Raised when speech-to-text fails."""

    def __init__(self, message: str):
        super().__init__(
            ErrorKind.TRANSCRIPTION_FAILED,
            f"Transcription failed: {message}",
        )


class GenerationFailedError(VoiceRelayError):
    """Raised when reply generation fails."""

    def __init__(self, message: str):
        super().__init__(
            ErrorKind.GENERATION_FAILED,
            f"Generation failed: {message}",
        )


class SynthesisFailedError(VoiceRelayError):
    """Raised when text-to-speech fails."""

    def __init__(self, message: str):
        super().__init__(
            ErrorKind.SYNTHESIS_FAILED,
            f"Synthesis failed: {message}",
        )


class InvalidMessageError(VoiceRelayError):
    """Raised when an inbound message cannot be decoded."""

    def __init__(self, message: str):
        super().__init__(ErrorKind.INVALID_MESSAGE, message)


class InternalError(VoiceRelayError):
    """Unexpected failure while handling a session."""

    def __init__(self, message: str = "Internal error"):
        super().__init__(ErrorKind.INTERNAL_ERROR, message)
