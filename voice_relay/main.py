"""
Main application entry point for the voice relay.

Initializes:
- FastAPI application
- Session registry with idle reaping
- Speech pipeline (Whisper STT, Qwen3 LLM, Kokoro TTS)
- Health and metrics endpoints
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import health, metrics, websocket
from .config import settings
from .core.session import SessionRegistry
from .observability.logging import configure_logging
from .services import VoicePipeline, build_default_pipeline

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def create_app(
    pipeline: VoicePipeline | None = None,
    registry: SessionRegistry | None = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        pipeline: Speech pipeline; defaults to the configured services
        registry: Session registry; a fresh one is created by default
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        Startup:
        1. Configure logging
        2. Create pipeline and registry
        3. Start idle session reaping

        Shutdown:
        1. Close all sessions
        2. Close service clients
        """
        configure_logging()
        logger.info("Starting voice relay...")

        app.state.pipeline = pipeline or build_default_pipeline()
        app.state.registry = registry or SessionRegistry()
        app.state.registry.start()

        health.mark_startup_complete()
        logger.info(f"Voice relay ready - listening on {settings.host}:{settings.port}")

        yield

        logger.info("Shutting down voice relay...")
        health.mark_shutdown()
        await app.state.registry.stop()
        await app.state.pipeline.aclose()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Voice Relay",
        description="Real-time voice chat relay: browser audio -> STT -> LLM -> TTS",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(websocket.router)
    app.include_router(health.router)
    app.include_router(metrics.router)

    @app.get("/")
    async def root() -> dict:
        """Root endpoint with service info."""
        return {
            "service": "voice-relay",
            "version": VERSION,
            "status": "running",
            "docs": "/docs",
            "health": "/health",
            "websocket": "/ws/voice",
            "metrics": "/metrics",
        }

    return app


app = create_app()


def run() -> None:
    """Run the application with uvicorn."""
    uvicorn.run(
        "voice_relay.main:app",
        host=settings.host,
        port=settings.port,
        workers=1,  # Sessions live in process memory
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
