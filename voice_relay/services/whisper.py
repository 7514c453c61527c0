"""
Whisper STT microservice client.

One WebSocket session per utterance:
1. start_session with config
2. binary PCM16 LE mono 16kHz frames
3. flush to force finalization
4. end_session, collect final_transcript texts until session_ended
"""

import asyncio
import json
import logging
from uuid import uuid4

import websockets

from ..config import settings
from ..protocol.errors import TranscriptionFailedError

logger = logging.getLogger(__name__)


class WhisperTranscriber:
    """TranscribeFn backed by the Whisper STT service."""

    def __init__(
        self,
        service_url: str | None = None,
        language: str | None = None,
        chunk_bytes: int | None = None,
        timeout_seconds: float | None = None,
    ):
        self.service_url = service_url or settings.stt_url
        self.language = language or settings.stt_language
        self.chunk_bytes = chunk_bytes or settings.stt_chunk_bytes
        self.timeout_seconds = timeout_seconds or settings.service_timeout_seconds

    async def __call__(self, audio: bytes) -> str:
        try:
            return await asyncio.wait_for(self._transcribe(audio), self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise TranscriptionFailedError(
                f"STT timed out after {self.timeout_seconds:.0f}s"
            ) from e
        except (OSError, websockets.WebSocketException) as e:
            raise TranscriptionFailedError(f"STT unavailable: {e}") from e

    async def _transcribe(self, audio: bytes) -> str:
        session_id = f"relay-{uuid4().hex[:8]}"
        texts: list[str] = []

        async with websockets.connect(self.service_url) as ws:
            await ws.send(json.dumps({
                "type": "start_session",
                "session_id": session_id,
                "config": {
                    "lang_code": self.language,
                    "sample_rate": 16000,
                    "vad_enabled": False,
                    "partial_results": False,
                    "word_timestamps": False,
                },
            }))

            response = json.loads(await ws.recv())
            if response.get("type") != "session_started":
                raise TranscriptionFailedError(
                    response.get("message", f"unexpected reply: {response.get('type')}")
                )

            # Whisper expects whole PCM16 samples
            usable = len(audio) - len(audio) % 2
            for offset in range(0, usable, self.chunk_bytes):
                await ws.send(audio[offset:min(offset + self.chunk_bytes, usable)])

            await ws.send(json.dumps({"type": "flush"}))
            await ws.send(json.dumps({"type": "end_session"}))

            async for message in ws:
                if isinstance(message, bytes):
                    continue
                data = json.loads(message)
                msg_type = data.get("type")

                if msg_type == "final_transcript":
                    text = data.get("text", "").strip()
                    if text:
                        texts.append(text)
                elif msg_type == "error":
                    raise TranscriptionFailedError(
                        f"{data.get('code', 'ERROR')}: {data.get('message', '')}"
                    )
                elif msg_type == "session_ended":
                    break

        text = " ".join(texts)
        logger.debug(f"STT [{session_id}]: '{text[:80]}' ({len(audio)} bytes)")
        return text
