"""Tests for the FastAPI endpoints (TestClient, in-process)."""

import json

import pytest
from fastapi.testclient import TestClient

from backend.app import create_app
from chorus.config import Settings
from chorus.llm import ScriptedLLM
from chorus.models import Character, LLMModel

BODY = {
    "scene_description": "A tavern at dusk",
    "character_configs": [
        {"character_id": "ada", "llm_id": "fast"},
        {"character_id": "brom", "llm_id": "smart"},
    ],
    "length": 1,
}


def _make_client(tmp_path, api_key: str | None = "sk-test", scripts=None) -> TestClient:
    settings = Settings(data_dir=tmp_path / "data", openrouter_api_key=api_key)
    app = create_app(settings=settings, llm=ScriptedLLM(scripts or [["Hi", " there"], ["Hello"]]))
    storage = app.state.storage
    storage.save_character(Character(id="ada", name="Ada", short_description="A mathematician"))
    storage.save_character(Character(id="brom", name="Brom", short_description="A blacksmith"))
    storage.save_llm(LLMModel(id="fast", name="Fast", model="vendor/fast-1"))
    storage.save_llm(LLMModel(id="smart", name="Smart", model="vendor/smart-2"))
    return TestClient(app)


@pytest.fixture
def client(tmp_path):
    with _make_client(tmp_path) as c:
        yield c


def _sse_events(text: str) -> list[tuple[str, dict]]:
    events = []
    for block in text.split("\n\n"):
        if not block or block.startswith(":"):
            continue
        name, data = block.split("\n")
        events.append((name.removeprefix("event: "), json.loads(data.removeprefix("data: "))))
    return events


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "active_streams": 0}


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

class TestDialogueStream:
    def test_streams_events(self, client):
        resp = client.post("/api/dialogues/stream", json=BODY)
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["x-dialogue-id"] == "1"
        assert resp.headers["cache-control"] == "no-cache"

        events = _sse_events(resp.text)
        assert [name for name, _ in events] == [
            "dialogue-start",
            "character-start", "token", "token", "character-complete",
            "character-start", "token", "character-complete",
            "dialogue-complete",
        ]
        assert events[0][1]["dialogue_id"] == 1
        assert [d["token"] for n, d in events if n == "token"] == ["Hi", " there", "Hello"]
        assert events[-1][1]["status"] == "completed"

    def test_dialogue_persisted(self, client):
        client.post("/api/dialogues/stream", json=BODY)
        resp = client.get("/api/dialogues/1")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "completed"
        assert [(m["character_id"], m["content"]) for m in data["messages"]] == [
            ("ada", "Hi there"), ("brom", "Hello"),
        ]

    def test_list_dialogues_without_messages(self, client):
        client.post("/api/dialogues/stream", json=BODY)
        resp = client.get("/api/dialogues")
        assert resp.status_code == 200
        (item,) = resp.json()
        assert item["id"] == 1
        assert "messages" not in item

    def test_dialogues_are_per_user(self, client):
        client.post("/api/dialogues/stream", json=BODY)
        assert client.get("/api/dialogues", headers={"X-User-Id": "other"}).json() == []
        assert client.get("/api/dialogues/1", headers={"X-User-Id": "other"}).status_code == 403

    def test_missing_dialogue(self, client):
        assert client.get("/api/dialogues/99").status_code == 404

    @pytest.mark.parametrize("patch", [
        {"character_configs": [{"character_id": "ada", "llm_id": "fast"}]},
        {"scene_description": ""},
        {"scene_description": "x" * 501},
        {"length": 0},
        {"length": 51},
    ])
    def test_invalid_body(self, client, patch):
        resp = client.post("/api/dialogues/stream", json={**BODY, **patch})
        assert resp.status_code == 422

    def test_unknown_character(self, client):
        body = {**BODY, "character_configs": [
            {"character_id": "ada", "llm_id": "fast"},
            {"character_id": "ghost", "llm_id": "fast"},
        ]}
        resp = client.post("/api/dialogues/stream", json=body)
        assert resp.status_code == 404
        assert "ghost" in resp.json()["detail"]

    def test_no_api_key(self, tmp_path):
        with _make_client(tmp_path, api_key=None) as c:
            resp = c.post("/api/dialogues/stream", json=BODY)
        assert resp.status_code == 402

    def test_close_without_live_stream(self, client):
        client.post("/api/dialogues/stream", json=BODY)
        resp = client.delete("/api/dialogues/1/stream")
        assert resp.status_code == 404

    def test_close_someone_elses_stream(self, client):
        client.post("/api/dialogues/stream", json=BODY)
        resp = client.delete("/api/dialogues/1/stream", headers={"X-User-Id": "other"})
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Characters, LLMs, API key
# ---------------------------------------------------------------------------

class TestCatalogue:
    def test_list_characters(self, client):
        ids = [c["id"] for c in client.get("/api/characters").json()]
        assert ids == ["ada", "brom"]

    def test_create_character(self, client):
        resp = client.post("/api/characters", json={
            "name": "Captain Nemo", "short_description": "Commander of the Nautilus",
        })
        assert resp.status_code == 201
        assert resp.json()["id"] == "captain-nemo"
        assert resp.json()["owner"] == "local"
        other = client.get("/api/characters", headers={"X-User-Id": "other"}).json()
        assert "captain-nemo" not in [c["id"] for c in other]

    def test_duplicate_character(self, client):
        resp = client.post("/api/characters", json={"name": "Ada", "short_description": "again"})
        assert resp.status_code == 409

    def test_list_llms(self, client):
        assert [m["id"] for m in client.get("/api/llms").json()] == ["fast", "smart"]


class TestApiKey:
    def test_server_key_reported(self, client):
        assert client.get("/api/api-key").json() == {"has_api_key": True, "source": "server"}

    def test_set_and_clear_user_key(self, tmp_path):
        with _make_client(tmp_path, api_key=None) as c:
            assert c.get("/api/api-key").json() == {"has_api_key": False, "source": None}
            resp = c.put("/api/api-key", json={"api_key": "sk-mine"})
            assert resp.json() == {"has_api_key": True, "source": "user"}
            assert c.post("/api/dialogues/stream", json=BODY).status_code == 200
            resp = c.put("/api/api-key", json={"api_key": ""})
            assert resp.json() == {"has_api_key": False, "source": None}

    def test_key_never_returned(self, client):
        client.put("/api/api-key", json={"api_key": "sk-secret"})
        assert "sk-secret" not in client.get("/api/api-key").text
