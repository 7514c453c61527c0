"""
Pytest fixtures for voice relay tests.

The speech services are replaced by scripted fakes so tests run without
the STT, LLM and TTS backends.
"""

import asyncio
import base64
import time

import pytest
import pytest_asyncio

from voice_relay.core.handler import SessionProtocolHandler
from voice_relay.core.session import SessionRegistry
from voice_relay.protocol.messages import MessageType, parse_message
from voice_relay.services.pipeline import SynthesisResult, VoicePipeline

DEFAULT_TRANSCRIPT = "Tell me about Revolt Motors"
DEFAULT_REPLY = "Revolt Motors builds AI-enabled electric motorcycles like the RV400."


class FakeTranscriber:
    """Returns a fixed transcript; ``gate`` holds the call until set."""

    def __init__(self, transcript: str | Exception = DEFAULT_TRANSCRIPT):
        self.transcript = transcript
        self.calls: list[bytes] = []
        self.gate: asyncio.Event | None = None

    async def __call__(self, audio: bytes) -> str:
        self.calls.append(audio)
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.transcript, Exception):
            raise self.transcript
        return self.transcript


class FakeReplyGenerator:
    """Returns a fixed reply and remembers forgotten sessions."""

    def __init__(self, reply: str | Exception = DEFAULT_REPLY):
        self.reply = reply
        self.calls: list[tuple[str, str]] = []
        self.forgotten: list[str] = []
        self.gate: asyncio.Event | None = None

    async def __call__(self, text: str, session_id: str) -> str:
        self.calls.append((text, session_id))
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply

    def forget(self, session_id: str) -> None:
        self.forgotten.append(session_id)


class FakeSynthesizer:
    """Returns a tiny WAV handle with a configurable duration."""

    def __init__(self, duration_ms: int = 800, error: Exception | None = None):
        self.duration_ms = duration_ms
        self.error = error
        self.calls: list[str] = []
        self.closed = False

    async def __call__(self, text: str) -> SynthesisResult:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return SynthesisResult(audio_handle="UklGRiQAAABXQVZF", duration_ms=self.duration_ms)

    async def aclose(self) -> None:
        self.closed = True


class MessageRecorder:
    """Emit callable that records outbound messages with arrival times."""

    def __init__(self):
        self.messages = []
        self.times: list[float] = []

    async def __call__(self, message) -> None:
        self.messages.append(message)
        self.times.append(time.monotonic())

    @property
    def types(self) -> list[str]:
        return [message.type.value for message in self.messages]

    def of_type(self, msg_type: MessageType) -> list:
        return [message for message in self.messages if message.type == msg_type]

    def time_of(self, msg_type: MessageType) -> float:
        for message, at in zip(self.messages, self.times):
            if message.type == msg_type:
                return at
        raise AssertionError(f"No {msg_type.value} message recorded")

    async def wait_for(self, msg_type: MessageType, timeout: float = 2.0):
        """Poll until a message of the given type was emitted."""
        deadline = time.monotonic() + timeout
        while True:
            found = self.of_type(msg_type)
            if found:
                return found[0]
            if time.monotonic() > deadline:
                raise AssertionError(f"Timed out waiting for {msg_type.value}; got {self.types}")
            await asyncio.sleep(0.005)


def fragment(session_id: str, data: bytes):
    """Build an audio-fragment message the way it arrives on the wire."""
    return parse_message({
        "type": "audio-fragment",
        "sessionId": session_id,
        "audio": base64.b64encode(data).decode("ascii"),
        "timestamp": 1700000000000,
    })


def event(msg_type: str, session_id: str | None = None):
    """Build a control message by wire type."""
    data = {"type": msg_type}
    if session_id is not None:
        data["sessionId"] = session_id
    return parse_message(data)


@pytest.fixture
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def generator() -> FakeReplyGenerator:
    return FakeReplyGenerator()


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def pipeline(transcriber, generator, synthesizer) -> VoicePipeline:
    return VoicePipeline(
        transcribe_fn=transcriber,
        generate_reply_fn=generator,
        synthesize_fn=synthesizer,
    )


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry(max_sessions=10, idle_timeout_seconds=300, reap_interval_seconds=60)


@pytest.fixture
def recorder() -> MessageRecorder:
    return MessageRecorder()


@pytest_asyncio.fixture
async def handler(registry, pipeline, recorder):
    """Protocol handler for one fake connection."""
    handler = SessionProtocolHandler(registry=registry, pipeline=pipeline, emit=recorder)
    yield handler
    await handler.disconnect()


@pytest_asyncio.fixture
async def session_id(handler, recorder) -> str:
    """Id of a freshly started session."""
    await handler.handle(event("start-session"))
    ready = await recorder.wait_for(MessageType.SESSION_READY)
    return ready.session_id
