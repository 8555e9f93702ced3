# =============================================================================
# Unit Tests — HTTP Surface
# =============================================================================
#
# Uses FastAPI's TestClient with the turn dependencies overridden, so no
# database or provider keys are needed.
# =============================================================================

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from advisor.agents.orchestrator import ZERO_WIDTH_SPACE
from advisor.api.chat import to_sse_event
from advisor.api.deps import get_turn_dependencies
from advisor.main import app
from conftest import SESSION_ID, FakeLLM


def _final(verbose: str) -> str:
    return json.dumps({"type": "final_answer", "answer_plain": verbose, "answer_verbose": verbose})


def _events(body: str) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in body.split("\n\n")
        if line.startswith("data: ")
    ]


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestChat:
    def test_chat_returns_answer_and_sources(self, client, make_deps, store):
        deps = make_deps(FakeLLM(replies=[_final("Apple looks fairly valued.")]))
        app.dependency_overrides[get_turn_dependencies] = lambda: deps

        response = client.post("/chat", json={"message": "Is Apple a buy?", "session_id": SESSION_ID})

        assert response.status_code == 200
        body = response.json()
        assert body["answer"] == "Apple looks fairly valued."
        assert body["session_id"] == SESSION_ID
        assert body["executed_trades"] == []
        assert body["sources"][0]["id"] == "doc-apple"
        assert "embedding" not in body["sources"][0]
        assert len(store.messages[SESSION_ID]) == 2

    def test_document_count_limits_sources(self, client, make_deps):
        deps = make_deps(FakeLLM(replies=[_final("ok")]))
        app.dependency_overrides[get_turn_dependencies] = lambda: deps

        response = client.post(
            "/chat",
            json={"message": "Is Apple a buy?", "session_id": SESSION_ID, "document_count": 1},
        )
        assert response.status_code == 200
        assert [s["id"] for s in response.json()["sources"]] == ["doc-apple"]

    @pytest.mark.parametrize("count", [0, 21])
    def test_document_count_out_of_range_rejected(self, client, make_deps, count):
        app.dependency_overrides[get_turn_dependencies] = lambda: make_deps(FakeLLM())
        response = client.post(
            "/chat", json={"message": "hi", "session_id": SESSION_ID, "document_count": count},
        )
        assert response.status_code == 422

    def test_enable_reasoning_selects_reasoning_model(self, client, make_deps, config):
        llm = FakeLLM(replies=[_final("ok")])
        deps = make_deps(llm)
        deps.settings = config.model_copy(update={"llm_reasoning_model": "deepseek-reasoner"})
        app.dependency_overrides[get_turn_dependencies] = lambda: deps

        response = client.post(
            "/chat", json={"message": "hi", "session_id": SESSION_ID, "enable_reasoning": True},
        )
        assert response.status_code == 200
        assert llm.complete_calls[0]["model"] == "deepseek-reasoner"

    def test_empty_message_rejected(self, client, make_deps):
        app.dependency_overrides[get_turn_dependencies] = lambda: make_deps(FakeLLM())
        response = client.post("/chat", json={"message": "", "session_id": SESSION_ID})
        assert response.status_code == 422

    def test_store_failure_is_bad_gateway(self, client, make_deps, store):
        store.get_chat_history = AsyncMock(side_effect=ConnectionError("db down"))
        deps = make_deps(FakeLLM(replies=[_final("ok")]))
        app.dependency_overrides[get_turn_dependencies] = lambda: deps

        response = client.post("/chat", json={"message": "hi", "session_id": SESSION_ID})
        assert response.status_code == 502

    def test_missing_provider_key_is_unavailable(self, client):
        with patch(
            "advisor.api.deps.get_default_dependencies",
            side_effect=ValueError("No API key configured"),
        ):
            response = client.post("/chat", json={"message": "hi", "session_id": SESSION_ID})
        assert response.status_code == 503
        assert "No API key configured" in response.json()["detail"]


class TestChatStream:
    def test_stream_emits_status_content_done(self, client, make_deps, store):
        deps = make_deps(FakeLLM(replies=[_final("Bonds pay coupons.")]))
        app.dependency_overrides[get_turn_dependencies] = lambda: deps

        response = client.post("/chat/stream", json={"message": "bonds?", "session_id": SESSION_ID})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = _events(response.text)
        assert events[0] == {"type": "status", "status": "Analyzing request..."}
        assert {"type": "content", "content": "Bonds pay coupons."} in events
        assert events[-1] == {"type": "done", "session_id": SESSION_ID}
        assert len(store.messages[SESSION_ID]) == 2

    def test_stream_error_event(self, client, make_deps, store):
        store.get_session = AsyncMock(side_effect=ConnectionError("db down"))
        app.dependency_overrides[get_turn_dependencies] = lambda: make_deps(FakeLLM())

        response = client.post("/chat/stream", json={"message": "hi", "session_id": SESSION_ID})
        events = _events(response.text)
        assert {"type": "error", "error": "db down"} in events


class TestSseMapping:
    def test_status(self):
        assert to_sse_event("STATUS:Planning...", "STATUS:") == (
            'data: {"type": "status", "status": "Planning..."}\n\n'
        )

    def test_escaped_content_is_unescaped(self):
        event = json.loads(to_sse_event(ZERO_WIDTH_SPACE + "STATUS: literal", "STATUS:")[len("data: "):])
        assert event == {"type": "content", "content": "STATUS: literal"}
