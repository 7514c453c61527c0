"""
WebSocket endpoint for voice sessions.

Handles the WebSocket protocol:
- JSON messages for control (start-session, audio-fragment, end-audio,
  interrupt, heartbeat, disconnect)
- Binary frames as audio for the most recently started session
- JSON messages for transcription, audio-response, turn-complete,
  interrupted and error events
"""

import asyncio
import json
import logging

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..core.handler import SessionProtocolHandler
from ..protocol.errors import InvalidMessageError
from ..protocol.messages import ServerMessage, parse_message, to_wire

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketEmitter:
    """Serializes outbound events from the receive loop and turn tasks."""

    def __init__(self, websocket: WebSocket):
        self._websocket = websocket
        self._lock = asyncio.Lock()

    async def __call__(self, message: ServerMessage) -> None:
        async with self._lock:
            await self._websocket.send_json(to_wire(message))


@router.websocket("/ws/voice")
async def websocket_voice(websocket: WebSocket) -> None:
    """
    WebSocket endpoint for voice turns.

    Protocol:
    1. Client sends start-session
    2. Server responds with session-ready and a session id
    3. Client streams audio-fragment messages (or binary frames)
    4. Client sends end-audio
    5. Server sends transcription, then audio-response
    6. Server sends turn-complete after playback, unless the client
       sends interrupt first (server answers interrupted)
    7. Repeat 3-6; disconnect (or closing the socket) ends all sessions
    """
    await websocket.accept()

    handler = SessionProtocolHandler(
        registry=websocket.app.state.registry,
        pipeline=websocket.app.state.pipeline,
        emit=WebSocketEmitter(websocket),
    )
    with structlog.contextvars.bound_contextvars(connection_id=handler.connection_id):
        logger.info("Connection opened")
        await _serve(websocket, handler)


async def _serve(websocket: WebSocket, handler: SessionProtocolHandler) -> None:
    """Receive loop: frames -> handler until disconnect."""
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            if message.get("bytes") is not None:
                await handler.handle_audio_bytes(message["bytes"])
                continue

            raw_data = message.get("text")
            if raw_data is None:
                continue

            try:
                data = json.loads(raw_data)
            except json.JSONDecodeError:
                await handler.report_error(InvalidMessageError("Invalid JSON"))
                continue

            if not isinstance(data, dict):
                await handler.report_error(InvalidMessageError("Expected a JSON object"))
                continue

            try:
                msg = parse_message(data)
            except InvalidMessageError as e:
                session_id = data.get("sessionId")
                await handler.report_error(e, session_id if isinstance(session_id, str) else None)
                continue

            if not await handler.handle(msg):
                break

    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Unexpected error on connection")
    finally:
        await handler.disconnect()
        logger.info("Connection closed")

        # Close WebSocket
        try:
            await websocket.close()
        except Exception:
            pass
