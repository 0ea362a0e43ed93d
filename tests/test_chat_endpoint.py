from __future__ import annotations

from typing import List, Tuple

import pytest
from fastapi.testclient import TestClient

from sales_assistant.config import Settings, get_settings
from sales_assistant.main import create_app
from sales_assistant.services.delivery import get_reply_delivery
from sales_assistant.services.engine import ConversationEngine, get_engine


class RecordingDelivery:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, str | None]] = []

    def deliver(self, user_id: str, text: str, *, trace_id: str | None = None) -> None:
        self.sent.append((user_id, text, trace_id))


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def client(engine: ConversationEngine, settings: Settings, delivery: RecordingDelivery) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_reply_delivery] = lambda: delivery
    return TestClient(app)


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_post_message(client: TestClient, delivery: RecordingDelivery) -> None:
    resp = client.post(
        "/api/chat/message",
        json={"user_id": "u1", "message": "معجون", "trace_id": "trace-1"},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["intent"] == "product_inquiry"
    assert body["action"] == "ask_slot"
    assert body["mode"] == "AWAITING_SIZE"
    assert body["slots"]["product"] == "معجون"
    assert body["pending_slot"] == "size"
    assert body["trace_id"] == "trace-1"
    assert body["debug"] is None
    assert delivery.sent == [("u1", body["reply"], "trace-1")]


def test_post_message_accepts_aliases(client: TestClient) -> None:
    resp = client.post("/api/chat/message", json={"userId": "u1", "text": "فين العنوان"})
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["action"] == "answer"
    assert body["trace_id"]


def test_conversation_over_http(client: TestClient) -> None:
    for text in ("معجون", "2.8 كيلو"):
        client.post("/api/chat/message", json={"user_id": "u1", "message": text})
    resp = client.post("/api/chat/message", json={"user_id": "u1", "message": "3 كراتين"})
    body = resp.json()
    assert body["action"] == "complete"
    assert body["mode"] == "COMPLETE"
    assert body["slots"]["quantity"] == "3 كرتونة"


def test_session_lifecycle(client: TestClient) -> None:
    client.post("/api/chat/message", json={"user_id": "u1", "message": "معجون"})

    resp = client.get("/api/chat/sessions/u1")
    assert resp.status_code == 200, resp.text
    snapshot = resp.json()
    assert snapshot["mode"] == "AWAITING_SIZE"
    assert snapshot["slots"]["product"] == "معجون"
    assert [turn["role"] for turn in snapshot["history"]] == ["user", "agent"]

    assert client.delete("/api/chat/sessions/u1").status_code == 204

    resp = client.get("/api/chat/sessions/u1")
    assert resp.status_code == 404
    assert resp.json()["meta"]["error"]["code"] == "NOT_FOUND"


def test_missing_message_is_rejected(client: TestClient) -> None:
    resp = client.post("/api/chat/message", json={"user_id": "u1"})
    assert resp.status_code == 422
    assert resp.json()["meta"]["error"]["code"] == "BAD_REQUEST"


def test_blank_user_id_is_rejected(client: TestClient) -> None:
    resp = client.post("/api/chat/message", json={"user_id": "   ", "message": "معجون"})
    assert resp.status_code == 400
    error = resp.json()["meta"]["error"]
    assert error == {"code": "BAD_REQUEST", "reason": "empty_user_id"}


def test_debug_payload_only_in_debug_mode(engine: ConversationEngine, delivery: RecordingDelivery) -> None:
    debug_settings = Settings(debug=True)
    debug_engine = ConversationEngine(
        settings=debug_settings,
        store=engine.store,
        extractor=engine._extractor,
        classifier=engine._classifier,
        policy=engine._policy,
        composer=engine.composer,
    )
    app = create_app()
    app.dependency_overrides[get_engine] = lambda: debug_engine
    app.dependency_overrides[get_settings] = lambda: debug_settings
    app.dependency_overrides[get_reply_delivery] = lambda: delivery

    body = TestClient(app).post("/api/chat/message", json={"user_id": "u1", "message": "معجون"}).json()
    assert body["debug"]["decision"]["action"] == "ask_slot"


def test_error_reply_uses_configured_phone(engine: ConversationEngine, delivery: RecordingDelivery) -> None:
    app = create_app(Settings(fallback_contact_phone="0100000000"))
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_reply_delivery] = lambda: delivery

    resp = TestClient(app).post("/api/chat/message", json={"user_id": " ", "message": "معجون"})
    assert resp.status_code == 400
    assert "0100000000" in resp.json()["reply"]["text"]
    assert "01155501111" not in resp.json()["reply"]["text"]
