"""Configuration settings for the voice relay using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "You are Rev, the voice assistant for Revolt Motors. You only discuss topics "
    "related to Revolt Motors, their electric motorcycles, specifications, features, "
    "pricing, dealerships, and services.\n\n"
    "Key information about Revolt Motors:\n"
    "- Indian electric motorcycle manufacturer founded in 2019\n"
    "- Popular models: RV400, RV300 with different variants\n"
    "- Features: AI-enabled technology, mobile app connectivity, swappable battery technology\n"
    "- RV400 specifications: 150km range, 85km/h top speed, 3-4 hour charging time\n"
    "- RV300 specifications: 180km range, 65km/h top speed, lightweight design\n"
    "- Offers geo-fencing, remote diagnostics, anti-theft protection\n"
    "- Battery swapping stations available in select cities\n\n"
    "If users ask about topics unrelated to Revolt Motors, politely redirect them back. "
    "Keep responses conversational, helpful and under 50 words for natural voice interaction."
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VOICE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Server
    host: str = Field(default="0.0.0.0", description="Host to bind to")
    port: int = Field(default=3000, description="Port to bind to")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins",
    )

    # Session limits
    max_sessions: int = Field(
        default=100,
        description="Maximum concurrent voice sessions",
    )
    session_idle_timeout_seconds: float = Field(
        default=300.0,
        description="Sessions idle longer than this are reaped (5 minutes)",
    )
    reap_interval_seconds: float = Field(
        default=60.0,
        description="Interval between idle-session reaping passes",
    )
    max_utterance_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum buffered audio per utterance before fragments are rejected",
    )

    # ==========================================================================
    # Speech-to-text (Whisper service)
    # ==========================================================================
    stt_url: str = Field(
        default="ws://localhost:8000/ws/stt",
        description="WebSocket URL of the Whisper STT service",
    )
    stt_language: str = Field(
        default="en",
        description="Language code for transcription",
    )
    stt_chunk_bytes: int = Field(
        default=1280,
        description="Audio chunk size sent to STT (20ms of PCM16 mono 16kHz)",
    )

    # ==========================================================================
    # Reply generation (Qwen3 service, OpenAI-compatible API)
    # ==========================================================================
    llm_url: str = Field(
        default="http://localhost:8001",
        description="Base URL of the OpenAI-compatible LLM service",
    )
    llm_model: str = Field(
        default="qwen3-32b",
        description="Model name sent with completion requests",
    )
    llm_api_key: str | None = Field(
        default=None,
        description="Bearer API key for the LLM service (optional)",
    )
    llm_timeout_seconds: float = Field(
        default=30.0,
        description="Completion request timeout in seconds",
    )
    llm_max_tokens: int = Field(
        default=200,
        description="Maximum tokens per spoken reply",
    )
    llm_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature",
    )
    max_history_turns: int = Field(
        default=10,
        description="Maximum conversation turns kept per session",
    )
    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        description="System prompt for reply generation",
    )

    # ==========================================================================
    # Text-to-speech (Kokoro service)
    # ==========================================================================
    tts_url: str = Field(
        default="ws://localhost:8002/ws/tts",
        description="WebSocket URL of the Kokoro TTS service",
    )
    tts_voice: str = Field(default="af_heart", description="TTS voice")
    tts_lang_code: str = Field(default="a", description="TTS language code")
    tts_sample_rate: int = Field(
        default=24000,
        description="Sample rate of PCM16 audio returned by TTS",
    )

    service_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single STT or TTS exchange",
    )

    # Observability
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Export a default instance for convenience
settings = get_settings()
