"""HTTP surface of the deck blueprint, driven through the Flask test client."""

from __future__ import annotations

import json

import pytest

from app import create_app
from src.agents.deck_agent import routes
from src.db.generation_log import InMemoryLogStore, get_log_store
from src.llm_gateway import LLMAuthenticationError

from .conftest import deck_feedback_json, happy_gateway, make_presentation

GENERATE_BODY = {
    "prompt": "Reduce our cloud costs by fixing the problem of idle resources",
    "slideCount": 5,
    "audience": "Engineering leads",
}


@pytest.fixture(autouse=True)
def memory_store(monkeypatch):
    monkeypatch.setenv("DECK_LOG_BACKEND", "memory")
    get_log_store.cache_clear()
    yield
    get_log_store.cache_clear()


@pytest.fixture
def gateway_holder():
    return {"gateway": happy_gateway(), "calls": []}


@pytest.fixture
def client(gateway_holder):
    def factory(provider, api_key=None):
        gateway_holder["calls"].append({"provider": provider, "api_key": api_key})
        return gateway_holder["gateway"]

    app = create_app({"TESTING": True, "DECK_GATEWAY_FACTORY": factory})
    return app.test_client()


def sse_events(response):
    body = response.get_data(as_text=True)
    return [
        json.loads(frame[len("data: "):])
        for frame in body.split("\n\n")
        if frame.startswith("data: ")
    ]


class TestGenerate:
    def test_returns_presentation(self, client, gateway_holder):
        resp = client.post("/api/generate", json={**GENERATE_BODY, "provider": "openai", "apiKey": "sk-test"})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["generationId"].startswith("gen_")
        assert len(data["presentation"]["slides"]) == 5
        assert data["framework"]["framework"] == "problem-solution"
        assert data["validationScores"]["quality"] >= 70
        assert data["tokensUsed"] > 0
        assert gateway_holder["calls"] == [{"provider": "openai", "api_key": "sk-test"}]

    def test_missing_prompt_is_rejected(self, client):
        resp = client.post("/api/generate", json={"slideCount": 5})
        assert resp.status_code == 400
        data = resp.get_json()
        assert data["success"] is False
        assert any(d["field"] == "prompt" for d in data["details"])

    def test_slide_count_out_of_range(self, client):
        resp = client.post("/api/generate", json={**GENERATE_BODY, "slideCount": 40})
        assert resp.status_code == 400

    def test_non_json_body(self, client):
        resp = client.post("/api/generate", data="prompt=hello", content_type="text/plain")
        assert resp.status_code == 400
        assert "JSON object" in resp.get_json()["error"]

    def test_authentication_failure_maps_to_401(self, client, gateway_holder):
        gateway_holder["gateway"] = happy_gateway(outline_generation=LLMAuthenticationError("bad key"))
        resp = client.post("/api/generate", json=GENERATE_BODY)
        assert resp.status_code == 401
        data = resp.get_json()
        assert data["errorType"] == "authentication"
        assert "bad key" in data["error"]
        assert "presentation" not in data

    def test_unparseable_outline_maps_to_502(self, client, gateway_holder):
        gateway_holder["gateway"] = happy_gateway(outline_generation="no json here")
        resp = client.post("/api/generate", json=GENERATE_BODY)
        assert resp.status_code == 502
        assert resp.get_json()["errorType"] == "malformed_response"


class TestStreaming:
    def test_stream_ends_with_single_complete_event(self, client):
        resp = client.post("/api/generate/stream", json=GENERATE_BODY)
        assert resp.status_code == 200
        assert resp.mimetype == "text/event-stream"
        assert resp.headers["Cache-Control"] == "no-cache"

        events = sse_events(resp)
        kinds = [e["type"] for e in events]
        assert kinds[0] == "connected"
        assert kinds[-1] == "complete"
        assert kinds.count("complete") + kinds.count("error") == 1
        progress = [e["progress"] for e in events if e["type"] == "progress"]
        assert progress and progress == sorted(progress)
        assert progress[-1] == 100
        assert len(events[-1]["presentation"]["slides"]) == 5
        assert {e["generationId"] for e in events} == {events[0]["generationId"]}

    def test_stream_flag_on_generate(self, client):
        resp = client.post("/api/generate", json={**GENERATE_BODY, "stream": True})
        assert resp.mimetype == "text/event-stream"
        assert sse_events(resp)[-1]["type"] == "complete"

    def test_failed_stream_ends_with_error_event(self, client, gateway_holder):
        gateway_holder["gateway"] = happy_gateway(outline_generation=LLMAuthenticationError("bad key"))
        events = sse_events(client.post("/api/generate/stream", json=GENERATE_BODY))
        kinds = [e["type"] for e in events]
        assert kinds[-1] == "error"
        assert "complete" not in kinds
        assert events[-1]["errorType"] == "authentication"


BRIEF = {"prompt": "Cut cloud costs for the quarterly board update", "audience": "Board of directors"}


def deck_validation_prompts(gateway):
    return [call["prompt"] for call in gateway.calls if call["purpose"] == "deck_validation"]


class TestRefineAndValidate:
    def test_refine_improves_low_scoring_deck(self, client, gateway_holder):
        gateway_holder["gateway"] = happy_gateway(deck_validation=[deck_feedback_json(60), deck_feedback_json(90)])
        deck = make_presentation().to_payload()
        resp = client.post("/api/refine", json={"presentation": deck, "originalRequest": BRIEF})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["finalScore"] > data["initialScore"]
        assert data["totalRounds"] >= 1
        assert len(data["presentation"]["slides"]) == 5

    def test_refine_requires_presentation(self, client):
        resp = client.post("/api/refine", json={"originalRequest": BRIEF})
        assert resp.status_code == 400

    def test_refine_requires_original_request(self, client):
        deck = make_presentation().to_payload()
        resp = client.post("/api/refine", json={"presentation": deck})
        assert resp.status_code == 400
        assert any(d["field"] == "originalRequest" for d in resp.get_json()["details"])

    def test_refine_scores_against_original_brief(self, client, gateway_holder):
        gateway = happy_gateway(deck_validation=[deck_feedback_json(60), deck_feedback_json(90)])
        gateway_holder["gateway"] = gateway
        deck = make_presentation().to_payload()
        body = {
            "presentation": deck,
            "originalRequest": {**BRIEF, "presentation_type": "technical", "slide_count": "5"},
            "frameworkId": "pyramid",
        }
        assert client.post("/api/refine", json=body).status_code == 200

        prompts = deck_validation_prompts(gateway)
        assert prompts
        for prompt in prompts:
            assert "- Prompt: Cut cloud costs for the quarterly board update" in prompt
            assert "- Audience: Board of directors" in prompt
            assert "- Type: technical" in prompt
            assert "- Framework: Pyramid Principle" in prompt

    def test_validate_reports_deck_and_slides(self, client):
        deck = make_presentation().to_payload()
        resp = client.post("/api/validate", json={"presentation": deck, "originalRequest": BRIEF})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["deck"]["overallScore"] == 88
        assert set(data["slides"]) == {f"slide-{n}" for n in range(1, 6)}
        assert 0 <= data["overallScore"] <= 100
        assert isinstance(data["refinementTargets"], list)

    def test_validate_scores_against_original_brief(self, client, gateway_holder):
        deck = make_presentation().to_payload()
        resp = client.post("/api/validate", json={"presentation": deck, "originalRequest": BRIEF})
        assert resp.status_code == 200

        [prompt] = deck_validation_prompts(gateway_holder["gateway"])
        assert "- Prompt: Cut cloud costs for the quarterly board update" in prompt
        assert "- Audience: Board of directors" in prompt
        assert "- Prompt: Cutting Cloud Costs\n" not in prompt

    def test_validate_falls_back_to_deck_metadata(self, client, gateway_holder):
        deck = make_presentation().to_payload()
        resp = client.post("/api/validate", json={"presentation": deck, "originalRequest": {"prompt": "Cut cloud costs"}})
        assert resp.status_code == 200

        [prompt] = deck_validation_prompts(gateway_holder["gateway"])
        assert "- Audience: Engineering leads" in prompt
        assert "- Framework: Problem" in prompt

    def test_validate_rejects_blank_prompt(self, client):
        deck = make_presentation().to_payload()
        resp = client.post("/api/validate", json={"presentation": deck, "originalRequest": {"prompt": "  "}})
        assert resp.status_code == 400


class TestGenerationLookup:
    def test_log_of_finished_generation(self, client):
        generation_id = client.post("/api/generate", json=GENERATE_BODY).get_json()["generationId"]
        resp = client.get(f"/api/generations/{generation_id}")
        assert resp.status_code == 200
        doc = resp.get_json()
        assert doc["status"] == "completed"
        assert doc["tokensUsed"] > 0
        assert doc["steps"]

    def test_unknown_generation(self, client):
        resp = client.get("/api/generations/gen_missing")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "not-found"

    def test_store_outage_maps_to_503(self, client, monkeypatch):
        class Offline(InMemoryLogStore):
            def get(self, generation_id):
                raise ConnectionError("mongo down")

        monkeypatch.setattr(routes, "get_log_store", lambda: Offline())
        assert client.get("/api/generations/gen_x").status_code == 503


def test_health(client):
    data = client.get("/health").get_json()
    assert data["status"] == "ok"
    assert data["logBackend"] == "InMemoryLogStore"
