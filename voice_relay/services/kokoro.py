"""
Kokoro TTS microservice client.

Sends the reply text in one session (start_session, send_text, flush,
end_session), collects the PCM16 binary frames and returns them as a
base64 WAV audio handle.
"""

import asyncio
import base64
import io
import json
import logging
import wave
from uuid import uuid4

import websockets

from ..config import settings
from ..protocol.errors import SynthesisFailedError
from .pipeline import SynthesisResult

logger = logging.getLogger(__name__)


def pcm16_to_wav(pcm: bytes, sample_rate: int) -> bytes:
    """Wrap mono PCM16 samples in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)  # 16-bit
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


def pcm16_duration_ms(pcm: bytes, sample_rate: int) -> int:
    """Playback duration of mono PCM16 audio."""
    return int(len(pcm) // 2 * 1000 / sample_rate)


class KokoroSynthesizer:
    """SynthesizeFn backed by the Kokoro TTS service."""

    def __init__(
        self,
        service_url: str | None = None,
        voice: str | None = None,
        lang_code: str | None = None,
        sample_rate: int | None = None,
        timeout_seconds: float | None = None,
    ):
        self.service_url = service_url or settings.tts_url
        self.voice = voice or settings.tts_voice
        self.lang_code = lang_code or settings.tts_lang_code
        self.sample_rate = sample_rate or settings.tts_sample_rate
        self.timeout_seconds = timeout_seconds or settings.service_timeout_seconds

    async def __call__(self, text: str) -> SynthesisResult:
        try:
            pcm = await asyncio.wait_for(self._synthesize(text), self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise SynthesisFailedError(
                f"TTS timed out after {self.timeout_seconds:.0f}s"
            ) from e
        except (OSError, websockets.WebSocketException) as e:
            raise SynthesisFailedError(f"TTS unavailable: {e}") from e

        if not pcm:
            raise SynthesisFailedError("TTS returned no audio")

        wav_bytes = pcm16_to_wav(pcm, self.sample_rate)
        return SynthesisResult(
            audio_handle=base64.b64encode(wav_bytes).decode("ascii"),
            duration_ms=pcm16_duration_ms(pcm, self.sample_rate),
            mime_type="audio/wav",
        )

    async def _synthesize(self, text: str) -> bytes:
        session_id = f"relay-{uuid4().hex[:8]}"
        audio = bytearray()

        async with websockets.connect(self.service_url) as ws:
            await ws.send(json.dumps({
                "type": "start_session",
                "session_id": session_id,
                "config": {"voice": self.voice, "lang_code": self.lang_code},
            }))

            response = json.loads(await ws.recv())
            if response.get("type") != "session_started":
                raise SynthesisFailedError(
                    response.get("message", f"unexpected reply: {response.get('type')}")
                )

            await ws.send(json.dumps({"type": "send_text", "text": text}))
            await ws.send(json.dumps({"type": "flush"}))
            await ws.send(json.dumps({"type": "end_session"}))

            async for message in ws:
                if isinstance(message, bytes):
                    audio.extend(message)
                    continue

                data = json.loads(message)
                msg_type = data.get("type")
                if msg_type == "error":
                    raise SynthesisFailedError(
                        f"{data.get('code', 'ERROR')}: {data.get('message', '')}"
                    )
                if msg_type == "session_ended":
                    break

        logger.debug(f"TTS [{session_id}]: {len(audio)} bytes for {len(text)} chars")
        return bytes(audio)
