"""Tests for the HTTP routers."""

from __future__ import annotations

from typing import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from fakes import ScriptedGenerator

from taletree.api.dependencies import get_setup_service, get_story_service
from taletree.config import Settings
from taletree.engine.errors import GeneratorFailure
from taletree.engine.orchestrator import TurnOrchestrator
from taletree.llm.base import LLMProvider
from taletree.main import app
from taletree.models.setup import Question, Questionnaire, Synopsis
from taletree.services.setup import SetupService
from taletree.services.story import StoryService
from taletree.storage.repository import MemorySessionRepository

_PARAMS = {
    "title": "Silent Orbit",
    "synopsis": "A crew member wakes alone.",
    "opening_text": "Frost cracks on the glass.",
    "location": "Cryobay",
}


@pytest.fixture
def story_generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def setup_llm() -> MagicMock:
    llm = MagicMock(spec=LLMProvider)
    llm.complete_structured = AsyncMock()
    return llm


@pytest.fixture
def client(story_generator: ScriptedGenerator, setup_llm: MagicMock) -> Iterator[TestClient]:
    service = StoryService(
        TurnOrchestrator(story_generator, settings=Settings(), auto_prefetch=False),
        MemorySessionRepository(),
    )
    app.dependency_overrides[get_story_service] = lambda: service
    app.dependency_overrides[get_setup_service] = lambda: SetupService(setup_llm)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _create(client: TestClient) -> dict:
    resp = client.post("/api/sessions", json=_PARAMS)
    assert resp.status_code == 200
    return resp.json()


class TestSessionsApi:
    def test_create_and_list(self, client: TestClient) -> None:
        session = _create(client)

        assert session["title"] == "Silent Orbit"
        assert list(session["nodes_by_id"]) == [session["root_node_id"]]

        listing = client.get("/api/sessions").json()
        assert listing["active"] == session["id"]
        assert [s["id"] for s in listing["sessions"]] == [session["id"]]

        assert client.get(f"/api/sessions/{session['id']}").json()["id"] == session["id"]

    def test_advance_and_reuse(self, client: TestClient, story_generator: ScriptedGenerator) -> None:
        sid = _create(client)["id"]

        first = client.post(f"/api/sessions/{sid}/advance", json={"option_id": "start"})
        assert first.status_code == 200
        body = first.json()
        assert body["reused"] is False
        assert body["phase"] == "opening"
        assert body["node"]["depth"] == 1
        assert [o["id"] for o in body["node"]["available_options"]] == ["left", "right"]

        root_id = client.get(f"/api/sessions/{sid}").json()["root_node_id"]
        client.post(f"/api/sessions/{sid}/rollback", json={"node_id": root_id})
        again = client.post(f"/api/sessions/{sid}/advance", json={"option_id": "start"}).json()

        assert again["reused"] is True
        assert again["node"]["id"] == body["node"]["id"]
        assert len(story_generator.calls) == 1

    def test_free_text_advance(self, client: TestClient, story_generator: ScriptedGenerator) -> None:
        sid = _create(client)["id"]
        client.post(f"/api/sessions/{sid}/advance", json={"option_id": "start"})

        resp = client.post(
            f"/api/sessions/{sid}/advance",
            json={"option_id": "__custom__", "free_text": "Shout for help"},
        )

        assert resp.status_code == 200
        assert story_generator.calls[-1][1].label == "Shout for help"

    def test_invalid_option_is_400(self, client: TestClient) -> None:
        sid = _create(client)["id"]
        resp = client.post(f"/api/sessions/{sid}/advance", json={"option_id": "fly"})

        assert resp.status_code == 400
        assert resp.json()["detail"]["kind"] == "invalid_option"

    def test_generator_failure_is_502(self, client: TestClient, story_generator: ScriptedGenerator) -> None:
        sid = _create(client)["id"]
        story_generator.fail_with = GeneratorFailure("upstream timeout")

        resp = client.post(f"/api/sessions/{sid}/advance", json={"option_id": "start"})

        assert resp.status_code == 502
        assert resp.json()["detail"]["kind"] == "generator_failure"
        session = client.get(f"/api/sessions/{sid}").json()
        assert session["current_node_id"] == session["root_node_id"]

    def test_rollback_unknown_node_is_404(self, client: TestClient) -> None:
        sid = _create(client)["id"]
        resp = client.post(f"/api/sessions/{sid}/rollback", json={"node_id": "ghost"})

        assert resp.status_code == 404
        assert resp.json()["detail"]["kind"] == "node_not_found"

    def test_views(self, client: TestClient) -> None:
        session = _create(client)
        sid = session["id"]
        node = client.post(f"/api/sessions/{sid}/advance", json={"option_id": "start"}).json()["node"]

        current = client.get(f"/api/sessions/{sid}/current").json()
        assert current["node"]["id"] == node["id"]
        assert current["running_state"]["turn_count"] == 1

        path = client.get(f"/api/sessions/{sid}/path/{node['id']}").json()
        assert path["path"] == [session["root_node_id"], node["id"]]
        assert client.get(f"/api/sessions/{sid}/path/ghost").status_code == 404

        tree = client.get(f"/api/sessions/{sid}/tree").json()["tree"]
        assert tree["children"][0]["is_current"] is True

    def test_prefetch(self, client: TestClient) -> None:
        sid = _create(client)["id"]
        client.post(f"/api/sessions/{sid}/advance", json={"option_id": "start"})

        report = client.post(f"/api/sessions/{sid}/prefetch").json()

        assert report["launched"] == 2
        assert report["inserted"] == 2

    def test_unknown_session_is_404(self, client: TestClient) -> None:
        assert client.get("/api/sessions/ghost").status_code == 404
        assert client.post("/api/sessions/ghost/advance", json={"option_id": "start"}).status_code == 404
        assert client.get("/api/sessions/ghost/tree").status_code == 404
        assert client.delete("/api/sessions/ghost").status_code == 404

    def test_delete(self, client: TestClient) -> None:
        sid = _create(client)["id"]

        assert client.delete(f"/api/sessions/{sid}").status_code == 200
        assert client.get(f"/api/sessions/{sid}").status_code == 404


class TestSetupApi:
    def test_questions(self, client: TestClient, setup_llm: MagicMock) -> None:
        setup_llm.complete_structured.return_value = Questionnaire(
            title="Heist",
            questions=[Question(id="role", label="Role?", options=["Hacker", "Face"])],
        )

        resp = client.post("/api/setup/questions", json={"background": "A neon heist"})

        assert resp.status_code == 200
        assert resp.json()["questions"][0]["id"] == "role"

    def test_synopsis_includes_session_params(self, client: TestClient, setup_llm: MagicMock) -> None:
        setup_llm.complete_structured.return_value = Synopsis(
            title="Neon", system_synopsis="Rules.", opening_text="Rain.", starting_location="Alley",
        )

        resp = client.post(
            "/api/setup/synopsis", json={"background": "A neon heist", "answers": {"role": "Hacker"}},
        )

        body = resp.json()
        assert body["synopsis"]["title"] == "Neon"
        assert body["session_params"]["location"] == "Alley"
        assert client.post("/api/sessions", json=body["session_params"]).status_code == 200

    def test_generation_failure_is_502(self, client: TestClient, setup_llm: MagicMock) -> None:
        setup_llm.complete_structured.side_effect = RuntimeError("provider down")

        resp = client.post("/api/setup/questions", json={"background": "A neon heist"})

        assert resp.status_code == 502

    def test_blank_background_rejected(self, client: TestClient) -> None:
        assert client.post("/api/setup/questions", json={"background": ""}).status_code == 422


class TestSeedsAndProviders:
    def test_seeds(self, client: TestClient) -> None:
        seeds = client.get("/api/seeds", params={"count": 2}).json()
        assert len(seeds) == 2
        assert {"id", "title", "hook", "tags", "tone"} <= set(seeds[0])

    def test_providers_listing(self, client: TestClient) -> None:
        body = client.get("/api/providers").json()
        assert set(body["providers"]) == {"openai", "anthropic", "groq"}
        assert body["active"] in body["providers"]

    def test_unknown_provider_rejected(self, client: TestClient) -> None:
        resp = client.put("/api/providers/active", json={"name": "nope"})
        assert resp.status_code == 400
