"""HTTP surface tests: FastAPI TestClient with the orchestrator dependency overridden."""
import fitz
import pytest
from fastapi.testclient import TestClient

from api.main import app, get_orchestrator
from models.errors import AdvisoryProviderError


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["sessions"] == {"sessions": 0, "locks": 0}


class TestDialogueRoutes:
    def test_chat_hi(self, client):
        resp = client.post("/api/chat", json={"message": "hi", "session_id": "web_1"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["current_step"] == "mode_selection"
        assert body["type"] == "button_choice"
        assert [b["value"] for b in body["buttons"]] == ["generate_business", "ask_question", "location_analysis"]
        assert body["context"] == {}

    @pytest.mark.parametrize("payload", [
        {"session_id": "web_1"},
        {"message": "hi"},
        {"message": "   ", "session_id": "web_1"},
    ])
    def test_chat_missing_fields(self, client, store, payload):
        resp = client.post("/api/chat", json=payload)
        assert resp.status_code == 400
        assert "required" in resp.json()["error"]
        assert store.stats()["sessions"] == 0

    def test_button_click(self, client):
        resp = client.post("/api/button_click", json={"button_value": "ask_question", "session_id": "web_1"})
        assert resp.status_code == 200
        assert resp.json()["current_step"] == "question_mode"

    def test_button_click_missing_value(self, client):
        resp = client.post("/api/button_click", json={"session_id": "web_1"})
        assert resp.status_code == 400

    def test_select_idea_flow(self, client):
        client.post("/api/button_click", json={"button_value": "generate_business", "session_id": "web_1"})
        client.post("/api/chat", json={"message": "Asha", "session_id": "web_1"})
        client.post("/api/chat", json={"message": "Pune", "session_id": "web_1"})
        client.post("/api/button_click", json={"button_value": "cooking", "session_id": "web_1"})
        ideas = client.post("/api/button_click", json={"button_value": "show_ideas", "session_id": "web_1"})
        assert ideas.json()["type"] == "ideas"

        resp = client.post("/api/select_idea", json={"idea_id": 0, "session_id": "web_1"})
        assert resp.status_code == 200
        assert resp.json()["context"]["selected_idea"]["title"] == "Home Tiffin Service"

    @pytest.mark.parametrize("payload", [
        {"session_id": "web_1"},
        {"idea_id": 5, "session_id": "web_1"},
        {"idea_id": "first", "session_id": "web_1"},
    ])
    def test_select_idea_invalid(self, client, payload):
        resp = client.post("/api/select_idea", json=payload)
        assert resp.status_code == 400

    def test_unexpected_error_returns_localized_reply(self, client, engine):
        client.post("/api/button_click", json={"button_value": "ask_question", "session_id": "web_1"})
        engine.cofounder_response.side_effect = RuntimeError("bug")

        resp = client.post("/api/chat", json={"message": "help", "session_id": "web_1", "language": "hi-IN"})

        assert resp.status_code == 500
        assert resp.json()["reply"] == "क्षमा करें, कुछ गलत हो गया। कृपया थोड़ी देर बाद फिर से प्रयास करें।"


class TestBusinessQA:
    def test_answer(self, client, engine):
        resp = client.post("/api/business/qa", json={"question": "Do I need GST?", "session_id": "web_1"})
        assert resp.status_code == 200
        assert resp.json()["answer"] == "Register with Udyam first."
        assert engine.answer_business_question.await_args.args[0] == "Do I need GST?"

    def test_missing_question(self, client):
        assert client.post("/api/business/qa", json={"session_id": "web_1"}).status_code == 400

    def test_provider_failure(self, client, engine):
        engine.answer_business_question.side_effect = AdvisoryProviderError("down", "answer_business_question")
        resp = client.post("/api/business/qa", json={"question": "GST?", "session_id": "web_1"})
        assert resp.status_code == 500
        assert "reply" in resp.json()


class TestUploadRoute:
    @staticmethod
    def _pdf() -> bytes:
        doc = fitz.open()
        doc.new_page().insert_text((72, 72), "Udyam registration guide")
        data = doc.tobytes()
        doc.close()
        return data

    def test_upload(self, client):
        client.post("/api/button_click", json={"button_value": "ask_question", "session_id": "web_1"})
        resp = client.post(
            "/api/upload-pdf",
            data={"session_id": "web_1"},
            files={"pdf": ("guide.pdf", self._pdf(), "application/pdf")},
        )
        assert resp.status_code == 200
        assert resp.json()["filename"] == "guide.pdf"
        assert resp.json()["pages"] == 1

    def test_upload_wrong_mode(self, client):
        resp = client.post(
            "/api/upload-pdf",
            data={"session_id": "web_1"},
            files={"pdf": ("guide.pdf", self._pdf(), "application/pdf")},
        )
        assert resp.status_code == 400

    def test_upload_unreadable_pdf(self, client):
        client.post("/api/button_click", json={"button_value": "ask_question", "session_id": "web_1"})
        resp = client.post(
            "/api/upload-pdf",
            data={"session_id": "web_1"},
            files={"pdf": ("broken.pdf", b"%PDF-garbage", "application/pdf")},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "Failed to parse PDF"

    def test_upload_missing_file(self, client):
        resp = client.post("/api/upload-pdf", data={"session_id": "web_1"})
        assert resp.status_code == 400


class TestLocationRoutes:
    def test_detect(self, client):
        resp = client.post("/api/location/detect", json={"latitude": 18.53, "longitude": 73.85, "session_id": "web_1"})
        assert resp.status_code == 200
        assert resp.json()["city"] == "Pune"

        ctx = client.post("/api/business/qa", json={"question": "Where am I?", "session_id": "web_1"}).json()["context"]
        assert ctx["detected_location"] == "Shivajinagar, Pune, Maharashtra, India"
        assert ctx["user_latitude"] == 18.53

    def test_detect_not_found(self, client, geocoder):
        geocoder.reverse_geocode.return_value = None
        resp = client.post("/api/location/detect", json={"latitude": 0, "longitude": 0, "session_id": "web_1"})
        assert resp.status_code == 404

    def test_detect_missing_coordinates(self, client):
        assert client.post("/api/location/detect", json={"session_id": "web_1"}).status_code == 400

    def test_nearby(self, client, geocoder):
        geocoder.search_nearby.return_value = [{"name": "Cafe", "distance": 0.2}]
        resp = client.post("/api/location/nearby", json={
            "latitude": 18.53, "longitude": 73.85, "session_id": "web_1", "business_type": "cafe",
        })
        body = resp.json()
        assert body["count"] == 1
        assert body["radius"] == 2000
        assert body["center"] == {"latitude": 18.53, "longitude": 73.85}

    def test_analyze(self, client, geocoder):
        geocoder.search_nearby.return_value = [{"name": f"Salon {n}", "distance": n + 0.5} for n in range(6)]
        resp = client.post("/api/location/analyze", json={
            "latitude": 18.53, "longitude": 73.85, "session_id": "web_1", "business_type": "beauty",
        })
        body = resp.json()
        assert body["analysis"]["competition_level"] == "Medium"
        assert body["analysis"]["location"] == "Shivajinagar, Pune, Maharashtra, India"
        assert geocoder.search_nearby.await_args.args[3] == 5000

    def test_analyze_requires_business_type(self, client):
        resp = client.post("/api/location/analyze", json={"latitude": 18.53, "longitude": 73.85, "session_id": "web_1"})
        assert resp.status_code == 400
