"""
External capabilities consumed by a voice turn.

Each capability is a plain callable, async or sync:
- TranscribeFn(audio) -> text
- GenerateReplyFn(text, session_id) -> reply text
- SynthesizeFn(reply_text) -> SynthesisResult

Sync callables run in the default executor so a slow backend never stalls
other sessions. Any exception other than the matching failure error is
wrapped into it.
"""

import asyncio
import functools
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from ..observability.metrics import record_stage_latency
from ..protocol.errors import (
    GenerationFailedError,
    SynthesisFailedError,
    TranscriptionFailedError,
    VoiceRelayError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SynthesisResult:
    """Synthesized speech for a reply."""

    audio_handle: str
    duration_ms: int
    mime_type: str = "audio/wav"


TranscribeFn = Callable[[bytes], Union[str, Awaitable[str]]]
GenerateReplyFn = Callable[[str, str], Union[str, Awaitable[str]]]
SynthesizeFn = Callable[[str], Union[SynthesisResult, Awaitable[SynthesisResult]]]


def _is_async_callable(fn: Any) -> bool:
    while isinstance(fn, functools.partial):
        fn = fn.func
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
        getattr(fn, "__call__", None)
    )


async def _invoke(
    stage: str,
    fn: Callable[..., Any],
    error_cls: type[VoiceRelayError],
    *args: Any,
) -> Any:
    start = time.monotonic()
    try:
        if _is_async_callable(fn):
            result = await fn(*args)
        else:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, functools.partial(fn, *args))
            if inspect.isawaitable(result):
                result = await result
    except error_cls:
        raise
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.warning(f"{stage} failed: {e!r}")
        raise error_cls(str(e) or type(e).__name__) from e
    finally:
        record_stage_latency(stage, time.monotonic() - start)
    return result


@dataclass
class VoicePipeline:
    """The three external services of a turn."""

    transcribe_fn: TranscribeFn
    generate_reply_fn: GenerateReplyFn
    synthesize_fn: SynthesizeFn

    async def transcribe(self, audio: bytes) -> str:
        text = await _invoke("transcribe", self.transcribe_fn, TranscriptionFailedError, audio)
        if not isinstance(text, str):
            raise TranscriptionFailedError(f"expected text, got {type(text).__name__}")
        return text

    async def generate_reply(self, text: str, session_id: str) -> str:
        reply = await _invoke(
            "generate", self.generate_reply_fn, GenerationFailedError, text, session_id
        )
        if not isinstance(reply, str) or not reply.strip():
            raise GenerationFailedError("empty reply")
        return reply

    async def synthesize(self, reply_text: str) -> SynthesisResult:
        result = await _invoke("synthesize", self.synthesize_fn, SynthesisFailedError, reply_text)
        if not isinstance(result, SynthesisResult):
            raise SynthesisFailedError(f"expected SynthesisResult, got {type(result).__name__}")
        duration_ms = result.duration_ms
        if isinstance(duration_ms, bool) or not isinstance(duration_ms, int) or duration_ms < 0:
            raise SynthesisFailedError(f"invalid duration_ms: {duration_ms!r}")
        if not isinstance(result.audio_handle, str) or not result.audio_handle:
            raise SynthesisFailedError("empty audio handle")
        return result

    def forget(self, session_id: str) -> None:
        """Let services drop per-session state (e.g. chat history)."""
        for fn in (self.transcribe_fn, self.generate_reply_fn, self.synthesize_fn):
            forget = getattr(fn, "forget", None)
            if callable(forget):
                forget(session_id)

    async def aclose(self) -> None:
        """Close services that hold connections."""
        for fn in (self.transcribe_fn, self.generate_reply_fn, self.synthesize_fn):
            aclose = getattr(fn, "aclose", None)
            if callable(aclose):
                await aclose()
