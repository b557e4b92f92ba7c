"""
HTTP and websocket tests against the FastAPI app.

No completion credential is configured here, so every model call fails
before reaching the network and the routes exercise their degraded paths.
"""
import json

import pytest
from fastapi.testclient import TestClient

from medboard.config import settings
from medboard.main import app
from medboard.models.schemas import CaseContext


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(settings, "completion_api_key", "")
    monkeypatch.setattr(settings, "sequential_gap_ms", 0)
    app.state.opinion_cache.clear()
    return TestClient(app)


@pytest.fixture
def case_json(sample_case):
    return sample_case.model_dump(mode="json")


# ──────────────────────────────────────────────
# Health
# ──────────────────────────────────────────────

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_config_hides_secrets(client):
    body = client.get("/api/health/config").json()
    assert body["completion_api_key_set"] is False
    assert "completion_api_key" not in body


def test_model_readiness_without_key(client):
    body = client.get("/api/health/model").json()
    assert body == {"ready": False, "model": settings.model_lite, "api_key_set": False}


# ──────────────────────────────────────────────
# Query
# ──────────────────────────────────────────────

def test_query_without_key_asks_for_credentials(client, case_json):
    response = client.post("/api/query", json={"query": "What is her eGFR?", "case": case_json})
    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "text"
    assert body["sender"] == "ai"
    assert "API Key" in body["text"]


def test_query_rejects_empty_text(client, case_json):
    response = client.post("/api/query", json={"query": "", "case": case_json})
    assert response.status_code == 422


@pytest.mark.parametrize("short", ["F", "m", "woman"])
def test_query_accepts_short_gender_forms(client, case_json, short):
    response = client.post("/api/query", json={"query": "What is her eGFR?", "case": {**case_json, "gender": short}})
    assert response.status_code == 200


@pytest.mark.parametrize("short,expected", [("F", "Female"), ("m", "Male"), ("", "Unknown")])
def test_case_gender_short_forms(case_json, short, expected):
    assert CaseContext.model_validate({**case_json, "gender": short}).gender.value == expected


# ──────────────────────────────────────────────
# Board and debate
# ──────────────────────────────────────────────

def test_board_review_degrades_without_key(client, case_json):
    response = client.post("/api/board/review", json={"case": case_json})
    assert response.status_code == 200
    body = response.json()

    assert body["title"] == "Medical Board Review: Jane Doe"
    assert [o["specialty"] for o in body["specialist_opinions"]] == ["Cardiology", "Internal Medicine"]
    assert all(o["focus"] == "Consult unavailable" for o in body["specialist_opinions"])
    assert body["consolidated"]["summary"].startswith("I'm sorry")


def test_board_review_validates_options(client, case_json):
    response = client.post("/api/board/review", json={"case": case_json, "options": {"max_specialties": 0}})
    assert response.status_code == 422


def test_debate_init_falls_back(client, case_json):
    body = client.post("/api/debate/init", json={"case": case_json, "max_participants": 3}).json()
    assert body["topic"].startswith("Optimal management of")
    assert body["participants"][0]["role"] == "Moderator"
    assert len(body["participants"]) == 3


def test_debate_turn_falls_back_to_moderator(client, case_json):
    participants = [
        {"role": "Moderator", "name": "Dr. Chief", "specialty": "Chief of Medicine"},
        {"role": "Cardiologist", "name": "Dr. Heart", "specialty": "Cardiology"},
    ]
    body = client.post("/api/debate/turn", json={
        "case": case_json,
        "topic": "Diuresis",
        "participants": participants,
        "transcript": [],
    }).json()

    assert body["next_turn"]["speaker"] == "Dr. Chief"
    assert body["consensus_reached"] is False


def test_debate_turn_requires_participants(client, case_json):
    response = client.post("/api/debate/turn", json={"case": case_json, "topic": "x", "participants": []})
    assert response.status_code == 422


# ──────────────────────────────────────────────
# Cache administration
# ──────────────────────────────────────────────

def test_cache_stats_invalidate_and_clear(client, case_json, sample_case, sample_opinion):
    cache = app.state.opinion_cache
    cache.set(sample_case, "Cardiology", sample_opinion)
    cache.set(sample_case, "Nephrology", sample_opinion)

    stats = client.get("/api/cache/stats").json()
    assert stats["total_entries"] == 2
    assert stats["valid_entries"] == 2

    assert client.post("/api/cache/invalidate", json=case_json).json() == {"removed": 2}

    cache.set(sample_case, "Cardiology", sample_opinion)
    assert client.delete("/api/cache").json() == {"cleared": True}
    assert client.get("/api/cache/stats").json()["total_entries"] == 0


# ──────────────────────────────────────────────
# Websockets
# ──────────────────────────────────────────────

def test_board_websocket_streams_progress(client, case_json):
    with client.websocket_connect("/ws/board") as ws:
        ws.send_text(json.dumps({"case": case_json}))
        messages = [ws.receive_json() for _ in range(5)]

    assert [m["type"] for m in messages] == ["ack", "progress", "progress", "board_review", "complete"]
    assert [(m["index"], m["total"], m["specialty"]) for m in messages[1:3]] == [
        (1, 2, "Cardiology"),
        (2, 2, "Internal Medicine"),
    ]
    assert len(messages[3]["review"]["specialist_opinions"]) == 2


def test_board_websocket_rejects_bad_payload(client):
    with client.websocket_connect("/ws/board") as ws:
        ws.send_text("not json")
        message = ws.receive_json()

    assert message["type"] == "error"
    assert message["message"].startswith("Invalid request")


def test_debate_websocket_runs_to_ceiling(client, case_json):
    with client.websocket_connect("/ws/debate") as ws:
        ws.send_text(json.dumps({"case": case_json, "max_turns": 2}))
        messages = [ws.receive_json() for _ in range(4)]

    assert [m["type"] for m in messages] == ["debate_init", "turn", "turn", "debate_complete"]
    assert messages[0]["participants"][0]["role"] == "Moderator"
    assert messages[3] == {"type": "debate_complete", "consensus": None, "turns": 2}


def test_debate_websocket_requires_case(client):
    with client.websocket_connect("/ws/debate") as ws:
        ws.send_text(json.dumps({"max_turns": 2}))
        message = ws.receive_json()
    assert message["type"] == "error"
