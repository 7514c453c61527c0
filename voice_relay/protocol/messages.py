"""Pydantic models for the voice WebSocket protocol."""

from enum import Enum
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    Base64Bytes,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
)
from pydantic.alias_generators import to_camel


# =============================================================================
# Enums
# =============================================================================


class MessageType(str, Enum):
    """Message types for the WebSocket protocol."""

    # Client -> Server
    START_SESSION = "start-session"
    AUDIO_FRAGMENT = "audio-fragment"
    END_AUDIO = "end-audio"
    INTERRUPT = "interrupt"
    HEARTBEAT = "heartbeat"
    DISCONNECT = "disconnect"

    # Server -> Client
    SESSION_READY = "session-ready"
    TRANSCRIPTION = "transcription"
    AUDIO_RESPONSE = "audio-response"
    TURN_COMPLETE = "turn-complete"
    INTERRUPTED = "interrupted"
    ERROR = "error"


class ErrorKind(str, Enum):
    """Error kinds reported in the error message."""

    SESSION_NOT_FOUND = "SessionNotFound"
    INVALID_TRANSITION = "InvalidTransition"
    EMPTY_UTTERANCE = "EmptyUtterance"
    NO_ACTIVE_SESSION = "NoActiveSession"
    TRANSCRIPTION_FAILED = "TranscriptionFailed"
    GENERATION_FAILED = "GenerationFailed"
    SYNTHESIS_FAILED = "SynthesisFailed"
    MAX_SESSIONS_REACHED = "MaxSessionsReached"
    BUFFER_OVERFLOW = "BufferOverflow"
    INVALID_MESSAGE = "InvalidMessage"
    INTERNAL_ERROR = "InternalError"


class SessionEndReason(str, Enum):
    """Reasons for session ending."""

    DISCONNECTED = "disconnected"
    TIMEOUT = "timeout"
    SHUTDOWN = "shutdown"


class ProtocolMessage(BaseModel):
    """Base for wire messages: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Client -> Server Messages
# =============================================================================


class StartSessionMessage(ProtocolMessage):
    """Request a new voice session."""

    type: Literal[MessageType.START_SESSION] = MessageType.START_SESSION


class AudioFragmentMessage(ProtocolMessage):
    """One chunk of streamed microphone audio (base64 encoded)."""

    type: Literal[MessageType.AUDIO_FRAGMENT] = MessageType.AUDIO_FRAGMENT
    session_id: str = Field(..., description="Session identifier")
    audio: Base64Bytes = Field(
        ...,
        validation_alias=AliasChoices("audio", "bytes"),
        description="Base64 encoded audio payload",
    )
    timestamp: float | None = Field(
        default=None,
        description="Client send time in milliseconds (informational)",
    )


class EndAudioMessage(ProtocolMessage):
    """End of the current utterance."""

    type: Literal[MessageType.END_AUDIO] = MessageType.END_AUDIO
    session_id: str = Field(..., description="Session identifier")


class InterruptMessage(ProtocolMessage):
    """Stop the reply currently being spoken."""

    type: Literal[MessageType.INTERRUPT] = MessageType.INTERRUPT
    session_id: str = Field(..., description="Session identifier")


class HeartbeatMessage(ProtocolMessage):
    """Keep-alive; refreshes session activity when a session id is given."""

    type: Literal[MessageType.HEARTBEAT] = MessageType.HEARTBEAT
    session_id: str | None = Field(default=None, description="Session identifier")


class DisconnectMessage(ProtocolMessage):
    """Close every session of this connection."""

    type: Literal[MessageType.DISCONNECT] = MessageType.DISCONNECT


# =============================================================================
# Server -> Client Messages
# =============================================================================


class SessionReadyMessage(ProtocolMessage):
    """Session created and ready for audio."""

    type: Literal[MessageType.SESSION_READY] = MessageType.SESSION_READY
    session_id: str = Field(..., description="Session identifier")
    status: str = Field(default="ready")


class TranscriptionMessage(ProtocolMessage):
    """Recognized text of the user's utterance."""

    type: Literal[MessageType.TRANSCRIPTION] = MessageType.TRANSCRIPTION
    session_id: str = Field(..., description="Session identifier")
    text: str = Field(..., description="Transcribed text")


class AudioResponseMessage(ProtocolMessage):
    """Spoken reply for the current turn."""

    type: Literal[MessageType.AUDIO_RESPONSE] = MessageType.AUDIO_RESPONSE
    session_id: str = Field(..., description="Session identifier")
    audio_handle: str = Field(..., description="Synthesized audio handle")
    mime_type: str = Field(default="audio/wav", description="Audio MIME type")
    text: str = Field(..., description="Reply text")
    duration_ms: int = Field(..., ge=0, description="Estimated playback duration")


class TurnCompleteMessage(ProtocolMessage):
    """Playback of the reply finished; the session is idle again."""

    type: Literal[MessageType.TURN_COMPLETE] = MessageType.TURN_COMPLETE
    session_id: str = Field(..., description="Session identifier")


class InterruptedMessage(ProtocolMessage):
    """The reply was interrupted; no turn-complete follows."""

    type: Literal[MessageType.INTERRUPTED] = MessageType.INTERRUPTED
    session_id: str = Field(..., description="Session identifier")


class ErrorMessage(ProtocolMessage):
    """Error message."""

    type: Literal[MessageType.ERROR] = MessageType.ERROR
    kind: ErrorKind = Field(..., description="Error kind")
    message: str = Field(..., description="Human-readable error message")
    session_id: str | None = Field(default=None, description="Session identifier")


# =============================================================================
# Union types for parsing
# =============================================================================

ClientMessage = (
    StartSessionMessage
    | AudioFragmentMessage
    | EndAudioMessage
    | InterruptMessage
    | HeartbeatMessage
    | DisconnectMessage
)

ServerMessage = (
    SessionReadyMessage
    | TranscriptionMessage
    | AudioResponseMessage
    | TurnCompleteMessage
    | InterruptedMessage
    | ErrorMessage
)

_CLIENT_MESSAGES: dict[str, type[ProtocolMessage]] = {
    MessageType.START_SESSION.value: StartSessionMessage,
    MessageType.AUDIO_FRAGMENT.value: AudioFragmentMessage,
    MessageType.END_AUDIO.value: EndAudioMessage,
    MessageType.INTERRUPT.value: InterruptMessage,
    MessageType.HEARTBEAT.value: HeartbeatMessage,
    MessageType.DISCONNECT.value: DisconnectMessage,
}


def parse_message(data: dict[str, Any]) -> ClientMessage:
    """
    Parse an incoming JSON object into a typed client message.

    Raises:
        InvalidMessageError: Unknown type or payload not matching the schema
    """
    from .errors import InvalidMessageError

    msg_type = data.get("type")
    model = _CLIENT_MESSAGES.get(msg_type) if isinstance(msg_type, str) else None
    if model is None:
        raise InvalidMessageError(f"Unknown message type: {msg_type}")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidMessageError(
            f"Invalid '{msg_type}' message: {e.error_count()} validation error(s)"
        ) from e


def to_wire(message: ServerMessage) -> dict[str, Any]:
    """Serialize a server message to its JSON wire form."""
    return message.model_dump(mode="json", by_alias=True)
