"""End-to-end tests through the FastAPI app: HTTP helpers and the tutoring WebSocket."""
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from conftest import make_settings
from vocalearn.main import VERSION, create_app
from vocalearn.services import TutorServices


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as client:
        yield client


def receive_until(ws, kind):
    """Collect messages up to and including the first one of type ``kind``."""
    received = []
    while True:
        message = ws.receive_json()
        received.append(message)
        if message.get("type") == kind:
            return received


class TestHttpRoutes:
    def test_banner(self, client):
        body = client.get("/").json()

        assert body["service"] == "VocaLearn Backend"
        assert body["version"] == VERSION
        assert body["status"] == "running"
        assert "/ws" in body["endpoints"]

    def test_info_reports_configured_upstreams(self, client):
        assert client.get("/info").json() == {
            "status": "ok",
            "deepgram_configured": True,
            "gemini_configured": True,
            "murf_configured": True,
        }

    def test_languages(self, client):
        languages = client.get("/languages").json()["languages"]

        assert len(languages) == 9
        assert {"code": "ja-JP", "name": "Japanese (Japan)", "voiceId": "ja-JP-kenji"} in languages

    def test_scenarios(self, client):
        scenarios = client.get("/scenarios").json()

        assert [s["id"] for s in scenarios] == ["cafe", "business", "travel", "shopping", "social"]
        assert set(scenarios[0]) == {"id", "title", "description", "difficulty"}

    def test_start_practice(self, client):
        response = client.post(
            "/api/practice/start",
            json={"mode": "dialogue", "learningLanguage": "fr-FR", "nativeLanguage": "en-US"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["sessionId"].isdigit()
        assert body["mode"] == "dialogue"
        assert body["learningLanguage"] == "fr-FR"
        assert body["nativeLanguage"] == "en-US"

    @pytest.mark.parametrize(
        "payload, detail",
        [
            ({"mode": "karaoke", "learningLanguage": "fr-FR", "nativeLanguage": "en-US"}, "Invalid mode"),
            ({"learningLanguage": "fr-FR", "nativeLanguage": "en-US"}, "Invalid mode"),
            ({"mode": "echo", "learningLanguage": "fr-FR"}, "Missing languages"),
        ],
    )
    def test_start_practice_rejects(self, client, payload, detail):
        response = client.post("/api/practice/start", json=payload)

        assert response.status_code == 400
        assert response.json() == {"detail": detail}


class TestTutorSocket:
    def test_echo_turn(self, client, transcriber):
        transcriber.push("como estas")
        with client.websocket_connect("/ws?learningLanguage=es-ES&nativeLanguage=en-US&mode=echo") as ws:
            ws.send_bytes(b"\x00\x01")
            ws.send_bytes(b"\x02\x03")
            ws.send_text('{"end": true}')
            received = receive_until(ws, "done")

        assert received[0]["transcription"] == "como estas"
        assert received[1]["correction"] == "¿Cómo estás tú?"
        assert [m["label"] for m in received if m.get("type") == "audio"] == ["correction", "explanation"]
        assert transcriber.calls[0][0] == [b"\x00\x01", b"\x02\x03"]

    def test_malformed_control_frames_are_dropped(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json at all")
            ws.send_text('{"hello": "world"}')
            ws.send_bytes(b"\x00\x01")
            ws.send_text('{"end": true}')
            received = receive_until(ws, "done")

        assert not [m for m in received if "error" in m]

    def test_invalid_mode_reported_then_echo(self, client):
        with client.websocket_connect("/ws?mode=karaoke") as ws:
            first = ws.receive_json()
            ws.send_bytes(b"\x00\x01")
            ws.send_text('{"end": true}')
            received = receive_until(ws, "done")

        assert first == {"error": "Invalid mode: karaoke. Falling back to echo"}
        assert received[-1]["type"] == "done"

    def test_dialogue_opening_line(self, client):
        with client.websocket_connect("/ws?mode=dialogue&learningLanguage=it-IT") as ws:
            ws.send_text('{"type": "start_conversation", "scenario": "social"}')
            received = receive_until(ws, "done")

        assert received[0]["correction"] == "Ciao! Non credo che ci siamo mai incontrati prima. Sono Giulia, e tu?"
        assert received[0]["explanation"] == "Starting Social Gathering scenario: Meet new people and make friends"

    def test_quiz_round_trip(self, client):
        with client.websocket_connect("/ws?mode=quiz&questions=1&topic=food") as ws:
            question = receive_until(ws, "quiz_question")[-1]
            ws.send_text('{"action": "skip_question"}')
            feedback = receive_until(ws, "quiz_feedback")[-1]
            ws.send_text('{"action": "final_audio_completed"}')
            summary = receive_until(ws, "quiz_summary")[-1]

        assert question["totalQuestions"] == 1
        assert feedback["hasMoreQuestions"] is False
        assert summary["score"] == 0
        assert summary["questions"][0]["userAnswer"] == ""

    def test_idle_connection_times_out(self, client, services):
        services.settings.idle_timeout_seconds = 0.2
        with client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == {"error": "Connection timed out"}


class TestServices:
    def test_status_without_keys(self):
        services = TutorServices.from_settings(make_settings(DEEPGRAM_API_KEY=None, GEMINI_API_KEY=None, MURF_API_KEY=None))

        assert services.status() == {
            "deepgram_configured": False,
            "gemini_configured": False,
            "murf_configured": False,
        }

    def test_openrouter_key_counts_as_model_configured(self):
        services = TutorServices.from_settings(make_settings(GEMINI_API_KEY=None, OPENROUTER_API_KEY="or-test"))

        assert services.status()["gemini_configured"] is True
        assert services.model.configured is True

    async def test_aclose_closes_http_clients(self, settings):
        model, speech = AsyncMock(), AsyncMock()
        services = TutorServices(settings, transcriber=AsyncMock(), feedback=AsyncMock(), speech=speech, model=model)

        await services.aclose()

        model.aclose.assert_awaited_once()
        speech.aclose.assert_awaited_once()
