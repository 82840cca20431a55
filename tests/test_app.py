from __future__ import annotations

import json

import pytest
from conftest import StubLLMService, curriculum_text
from fastapi.testclient import TestClient

import app as app_module
from core.curriculum_generator import CurriculumGenerator
from services.moderation_service import ModerationService
from services.storage_service import StorageService


@pytest.fixture
def storage(tmp_path) -> StorageService:
    return StorageService(str(tmp_path / "curricula.json"))


def install(monkeypatch, storage, responses):
    llm = StubLLMService(responses)
    generator = CurriculumGenerator(
        llm,
        storage_service=storage,
        moderation_service=ModerationService(["forbidden"]),
        max_retries=3,
        streaming=True,
    )
    monkeypatch.setattr(app_module, "curriculum_generator", generator)
    monkeypatch.setattr(app_module, "storage_service", storage)
    monkeypatch.setattr(app_module, "generation_task", None)
    return generator, llm


def test_health() -> None:
    response = TestClient(app_module.app).get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_generate_curriculum(monkeypatch, storage) -> None:
    install(monkeypatch, storage, [curriculum_text(5)])

    response = TestClient(app_module.app).post("/api/curriculum", json={"topic": "  Bees  "})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "accepted"
    assert body["topic"] == "Bees"
    assert len(body["units"]) == 5
    assert len(body["units"][0]["cards"]) == 3
    assert storage.get_recent_searches() == ["Bees"]


def test_second_request_is_served_from_cache(monkeypatch, storage) -> None:
    _, llm = install(monkeypatch, storage, [curriculum_text(5)])
    client = TestClient(app_module.app)

    client.post("/api/curriculum", json={"topic": "Bees"})
    response = client.post("/api/curriculum", json={"topic": "Bees"})

    assert response.json()["from_cache"] is True
    assert llm.request_count == 1


def test_blocked_topic(monkeypatch, storage) -> None:
    install(monkeypatch, storage, [curriculum_text(5)])

    response = TestClient(app_module.app).post("/api/curriculum", json={"topic": "forbidden lore"})

    assert response.status_code == 403


def test_failed_generation(monkeypatch, storage) -> None:
    _, llm = install(monkeypatch, storage, [curriculum_text(2)])

    response = TestClient(app_module.app).post("/api/curriculum", json={"topic": "Bees"})

    assert response.status_code == 502
    assert "after 3 retries" in response.json()["detail"]
    assert llm.request_count == 4


def test_empty_topic(monkeypatch, storage) -> None:
    install(monkeypatch, storage, [curriculum_text(5)])

    response = TestClient(app_module.app).post("/api/curriculum", json={"topic": "   "})

    assert response.status_code == 400


def test_more_units(monkeypatch, storage) -> None:
    install(monkeypatch, storage, [curriculum_text(5), curriculum_text(3, prefix="Deeper")])
    client = TestClient(app_module.app)

    assert client.post("/api/curriculum/more").status_code == 400

    client.post("/api/curriculum", json={"topic": "Bees"})
    response = client.post("/api/curriculum/more")

    assert response.status_code == 200
    assert len(response.json()["units"]) == 8
    assert len(storage.load_curriculum("Bees")) == 8


def test_stream_curriculum(monkeypatch, storage) -> None:
    install(monkeypatch, storage, [curriculum_text(5)])

    with TestClient(app_module.app) as client:
        response = client.post("/api/curriculum/stream", json={"topic": "Bees"})

    events = [json.loads(line) for line in response.text.splitlines() if line]
    assert response.status_code == 200
    assert events[-1]["type"] == "outcome"
    assert events[-1]["outcome"]["status"] == "accepted"
    progress = [event for event in events if event["type"] == "progress"]
    assert progress
    assert len(progress[-1]["session"]["units"]) == 5


def test_cached_curriculum_endpoint(monkeypatch, storage) -> None:
    install(monkeypatch, storage, [curriculum_text(5)])
    client = TestClient(app_module.app)

    assert client.get("/api/curriculum/Bees").status_code == 404
    client.post("/api/curriculum", json={"topic": "Bees"})

    response = client.get("/api/curriculum/Bees")
    assert response.status_code == 200
    assert response.json()["from_cache"] is True


def test_session_and_reset(monkeypatch, storage) -> None:
    install(monkeypatch, storage, [curriculum_text(5)])
    client = TestClient(app_module.app)
    client.post("/api/curriculum", json={"topic": "Bees"})

    assert client.get("/api/session").json()["state"] == "accepted"

    response = client.post("/api/reset")
    assert response.json() == {
        "topic": "",
        "units": [],
        "state": "idle",
        "retry_count": 0,
        "progress": 0.0,
        "loading": False,
        "error": None,
    }


def test_recent_searches(monkeypatch, storage) -> None:
    install(monkeypatch, storage, [curriculum_text(5)])
    client = TestClient(app_module.app)
    client.post("/api/curriculum", json={"topic": "Bees"})
    client.post("/api/curriculum", json={"topic": "Ants"})

    assert client.get("/api/recent-searches").json() == {"recent_searches": ["Ants", "Bees"]}
    assert client.delete("/api/recent-searches").json() == {"recent_searches": []}
    assert client.get("/api/recent-searches").json() == {"recent_searches": []}


def test_services_unavailable(monkeypatch) -> None:
    monkeypatch.setattr(app_module, "curriculum_generator", None)
    monkeypatch.setattr(app_module, "storage_service", None)
    client = TestClient(app_module.app)

    assert client.post("/api/curriculum", json={"topic": "Bees"}).status_code == 503
    assert client.get("/api/recent-searches").status_code == 503


class BrokenStreamLLMService(StubLLMService):
    async def stream_response(self, prompt, temperature=None):
        self._next(prompt)
        yield "UNIT: A\n"
        raise ConnectionResetError("connection reset by peer")


def test_stream_curriculum_ends_with_failure_on_unexpected_error(monkeypatch, storage) -> None:
    generator, _ = install(monkeypatch, storage, [curriculum_text(5)])
    generator.llm_service = BrokenStreamLLMService([curriculum_text(5)])

    with TestClient(app_module.app) as client:
        response = client.post("/api/curriculum/stream", json={"topic": "Bees"})
        more = client.post("/api/curriculum/more")

    events = [json.loads(line) for line in response.text.splitlines() if line]
    assert events[-1]["type"] == "outcome"
    assert events[-1]["outcome"]["status"] == "failed"
    assert "connection reset" in events[-1]["outcome"]["error"]
    assert generator.session.snapshot().state == "failed"
    assert more.status_code == 400
    assert storage.load_curriculum("Bees") is None
