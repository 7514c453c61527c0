"""External speech and language services used by a voice turn."""

from .kokoro import KokoroSynthesizer
from .llm import Qwen3ReplyGenerator
from .pipeline import (
    GenerateReplyFn,
    SynthesisResult,
    SynthesizeFn,
    TranscribeFn,
    VoicePipeline,
)
from .whisper import WhisperTranscriber


def build_default_pipeline() -> VoicePipeline:
    """Pipeline wired to the Whisper, Qwen3 and Kokoro services from settings."""
    return VoicePipeline(
        transcribe_fn=WhisperTranscriber(),
        generate_reply_fn=Qwen3ReplyGenerator(),
        synthesize_fn=KokoroSynthesizer(),
    )


__all__ = [
    "GenerateReplyFn",
    "KokoroSynthesizer",
    "Qwen3ReplyGenerator",
    "SynthesisResult",
    "SynthesizeFn",
    "TranscribeFn",
    "VoicePipeline",
    "WhisperTranscriber",
    "build_default_pipeline",
]
