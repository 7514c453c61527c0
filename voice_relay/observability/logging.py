"""
Logging configuration for the voice relay.

Modules log through the standard ``logging`` module; records are rendered
by structlog so context bound per connection (``connection_id``) shows up
on every line, including lines logged from turn tasks.
"""

import logging
import sys
from typing import Any

import structlog

from ..config import settings


def configure_logging(log_level: str | None = None) -> None:
    """
    Configure structured logging for the application.

    JSON lines in production, colored console output at DEBUG.
    """
    level = (log_level or settings.log_level).upper()
    is_dev = level == "DEBUG"

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if is_dev:
        final_processors: list[Any] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        final_processors = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta] + final_processors,
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    # Replaces handlers from an earlier call (app factory may run more than once)
    logging.basicConfig(
        handlers=[handler],
        level=getattr(logging, level, logging.INFO),
        force=True,
    )

    # Set log levels for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "Logging configured",
        level=level,
        format="console" if is_dev else "json",
    )
