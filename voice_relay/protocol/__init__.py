"""Wire protocol: message models and error taxonomy."""

from .errors import VoiceRelayError
from .messages import ErrorKind, MessageType, parse_message, to_wire

__all__ = [
    "ErrorKind",
    "MessageType",
    "VoiceRelayError",
    "parse_message",
    "to_wire",
]
