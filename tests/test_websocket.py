"""
Tests for the WebSocket voice endpoint and HTTP routes.

Runs the full application with fake speech services through
fastapi.testclient.
"""

import base64

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import FakeReplyGenerator, FakeSynthesizer, FakeTranscriber
from voice_relay.core.session import SessionRegistry
from voice_relay.main import create_app
from voice_relay.services.pipeline import VoicePipeline


@pytest.fixture
def app_registry() -> SessionRegistry:
    return SessionRegistry(max_sessions=5)


@pytest.fixture
def client(app_registry):
    pipeline = VoicePipeline(
        transcribe_fn=FakeTranscriber(),
        generate_reply_fn=FakeReplyGenerator(),
        synthesize_fn=FakeSynthesizer(duration_ms=20),
    )
    app = create_app(pipeline=pipeline, registry=app_registry)
    with TestClient(app) as client:
        yield client


def start_session(ws) -> str:
    ws.send_json({"type": "start-session"})
    ready = ws.receive_json()
    assert ready["type"] == "session-ready"
    assert ready["status"] == "ready"
    return ready["sessionId"]


class TestVoiceWebSocket:
    """End-to-end turns over /ws/voice."""

    def test_full_turn_with_json_fragments(self, client):
        with client.websocket_connect("/ws/voice") as ws:
            session_id = start_session(ws)

            for chunk in (b"\x01\x02", b"\x03\x04", b"\x05\x06"):
                ws.send_json({
                    "type": "audio-fragment",
                    "sessionId": session_id,
                    "audio": base64.b64encode(chunk).decode(),
                    "timestamp": 0,
                })
            ws.send_json({"type": "end-audio", "sessionId": session_id})

            transcription = ws.receive_json()
            assert transcription == {
                "type": "transcription",
                "sessionId": session_id,
                "text": "Tell me about Revolt Motors",
            }

            response = ws.receive_json()
            assert response["type"] == "audio-response"
            assert response["audioHandle"]
            assert response["mimeType"] == "audio/wav"
            assert response["durationMs"] == 20

            assert ws.receive_json() == {"type": "turn-complete", "sessionId": session_id}

    def test_binary_audio_frames(self, client):
        with client.websocket_connect("/ws/voice") as ws:
            session_id = start_session(ws)

            ws.send_bytes(b"\x00\x01" * 64)
            ws.send_json({"type": "end-audio", "sessionId": session_id})

            assert ws.receive_json()["type"] == "transcription"
            assert ws.receive_json()["type"] == "audio-response"
            assert ws.receive_json()["type"] == "turn-complete"

    def test_empty_utterance(self, client):
        with client.websocket_connect("/ws/voice") as ws:
            session_id = start_session(ws)
            ws.send_json({"type": "end-audio", "sessionId": session_id})

            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["kind"] == "EmptyUtterance"
            assert error["sessionId"] == session_id

    def test_invalid_json(self, client):
        with client.websocket_connect("/ws/voice") as ws:
            ws.send_text("{not json")
            error = ws.receive_json()
            assert error["kind"] == "InvalidMessage"

            ws.send_json({"type": "sing-a-song", "sessionId": "s1"})
            error = ws.receive_json()
            assert error["kind"] == "InvalidMessage"
            assert error["sessionId"] == "s1"

            ws.send_json(["start-session"])
            assert ws.receive_json()["kind"] == "InvalidMessage"

            # Connection stays usable
            start_session(ws)

    def test_unknown_session(self, client):
        with client.websocket_connect("/ws/voice") as ws:
            ws.send_json({"type": "interrupt", "sessionId": "nope"})
            error = ws.receive_json()
            assert error["kind"] == "SessionNotFound"

    def test_disconnect_message_closes(self, client, app_registry):
        with client.websocket_connect("/ws/voice") as ws:
            start_session(ws)
            start_session(ws)
            assert app_registry.active_sessions == 2

            ws.send_json({"type": "disconnect"})
            with pytest.raises(WebSocketDisconnect):
                ws.receive_json()

        assert app_registry.active_sessions == 0

    def test_sessions_not_shared_between_connections(self, client):
        with client.websocket_connect("/ws/voice") as first:
            session_id = start_session(first)

            with client.websocket_connect("/ws/voice") as second:
                second.send_json({"type": "end-audio", "sessionId": session_id})
                assert second.receive_json()["kind"] == "SessionNotFound"


class TestHttpRoutes:
    def test_root(self, client):
        data = client.get("/").json()
        assert data["service"] == "voice-relay"
        assert data["websocket"] == "/ws/voice"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "OK"
        assert "timestamp" in data

    def test_probes(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

        ready = client.get("/health/ready")
        assert ready.status_code == 200
        assert ready.json()["status"] == "ready"

    def test_status(self, client):
        with client.websocket_connect("/ws/voice") as ws:
            start_session(ws)
            data = client.get("/health/status").json()

        assert data["sessions"]["active"] == 1
        assert data["sessions"]["by_phase"] == {"idle": 1}
        assert data["sessions"]["max"] == 5

    def test_metrics(self, client):
        with client.websocket_connect("/ws/voice") as ws:
            start_session(ws)

        response = client.get("/metrics")
        assert response.status_code == 200
        assert "voice_active_sessions" in response.text
        assert "voice_sessions_total" in response.text
