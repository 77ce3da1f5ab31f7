"""HTTP surface tests for the assistant service."""

import json

import pytest
from fastapi.testclient import TestClient

from word_pilot_providers import MockProvider

from services.assistant.app.errors import GENERIC_SERVICE_MESSAGE
from services.assistant.app.main import create_app
from services.assistant.app.service import AssistantService
from services.assistant.app.settings import AssistantSettings
from services.assistant.app.stores import InMemoryKeyValueStore, InMemoryRecordStore
from tests.utils.conversation import PLAN_REPLY, PROJECT_ID, RESEARCH_OUTPUT


@pytest.fixture
def provider() -> MockProvider:
    return MockProvider(chunk_size=12)


@pytest.fixture
def client(provider: MockProvider):
    service = AssistantService(
        record_store=InMemoryRecordStore(),
        kv_store=InMemoryKeyValueStore(),
        provider=provider,
        settings=AssistantSettings(),
    )
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


def _events(response) -> list[dict]:
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_metrics_endpoint(client: TestClient) -> None:
    client.get("/health")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "word_pilot_http_requests_total" in response.text


def test_session_defaults(client: TestClient) -> None:
    body = client.get(f"/projects/{PROJECT_ID}/session").json()
    assert body["currentPhase"] == 1
    assert body["phases"]["phase2"]["status"] == "not_started"


def test_submit_message_streams_events(client: TestClient, provider: MockProvider) -> None:
    provider.queue("Which era of sandwiches interests you?")

    response = client.post(f"/projects/{PROJECT_ID}/messages", json={"content": "Sandwich history"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    events = _events(response)
    kinds = [event["event"] for event in events]
    assert kinds[0] == "message_added"
    assert "message_updated" in kinds
    assert kinds[-1] == "done"
    assert events[-1]["state"] == "idle"

    snapshot = client.get(f"/projects/{PROJECT_ID}/messages").json()
    contents = [message["content"] for message in snapshot["messages"]]
    assert contents[-2:] == ["Sandwich history", "Which era of sandwiches interests you?"]


def test_empty_message_rejected(client: TestClient) -> None:
    response = client.post(f"/projects/{PROJECT_ID}/messages", json={"content": ""})
    assert response.status_code == 422


def test_research_preview_lifecycle(client: TestClient, provider: MockProvider) -> None:
    provider.queue(PLAN_REPLY, RESEARCH_OUTPUT)
    events = _events(client.post(f"/projects/{PROJECT_ID}/messages", json={"content": "Ready to research"}))
    assert any(event["event"] == "plan_applied" for event in events)

    snapshot = client.post(f"/projects/{PROJECT_ID}/phase", json={"phase": 2}).json()
    assert snapshot["phase"] == 2

    events = _events(client.post(f"/projects/{PROJECT_ID}/messages", json={"content": "Research: Cuban sandwich"}))
    assert any(event["event"] == "preview_ready" for event in events)

    preview = client.get(f"/projects/{PROJECT_ID}/preview").json()
    assert preview["kind"] == "research"
    assert preview["item"]["name"] == "Cuban sandwich"
    assert preview["data"]["sources"][0]["type"] == "book"

    busy = client.post(f"/projects/{PROJECT_ID}/messages", json={"content": "research Po' boy"})
    assert busy.status_code == 409

    approved = client.post(f"/projects/{PROJECT_ID}/preview/approve").json()
    assert approved["item"]["data"]["origin"].startswith("Created by Cuban immigrants")
    assert approved["preview"] is None

    items = client.get(f"/projects/{PROJECT_ID}/research-items").json()
    by_name = {item["name"]: item for item in items}
    assert by_name["Cuban sandwich"]["data"]
    assert by_name["Po' boy"]["data"] == {}

    missing = client.post(f"/projects/{PROJECT_ID}/preview/approve")
    assert missing.status_code == 404


def test_complete_phase_and_clear_history(client: TestClient, provider: MockProvider) -> None:
    provider.queue("Reply")
    client.post(f"/projects/{PROJECT_ID}/messages", json={"content": "Hi"})

    session = client.post(f"/projects/{PROJECT_ID}/phases/2/complete").json()
    assert session["phases"]["phase2"]["status"] == "complete"
    assert client.post(f"/projects/{PROJECT_ID}/phases/7/complete").status_code == 404

    cleared = client.delete(f"/projects/{PROJECT_ID}/messages").json()
    assert cleared == {"removed": 2}


def test_template_crud(client: TestClient) -> None:
    listing = client.get("/templates").json()
    assert listing["selected_id"] == "default"
    assert "default" in listing["templates"]

    payload = {"name": "Mine", "phase1": "p1", "phase2": "p2", "phase3": "p3"}
    created = client.post("/templates", json=payload)
    assert created.status_code == 201
    template_id = created.json()["id"]

    selected = client.put("/templates/selection", json={"template_id": template_id}).json()
    assert selected["selected_id"] == template_id

    updated = client.put(f"/templates/{template_id}", json={**payload, "phase2": "new"}).json()
    assert updated["templates"][template_id]["phase2"] == "new"

    assert client.put("/templates/custom-missing", json=payload).status_code == 404
    assert client.put("/templates/selection", json={"template_id": "nope"}).status_code == 404
    assert client.delete("/templates/default").status_code == 400

    remaining = client.delete(f"/templates/{template_id}").json()
    assert template_id not in remaining["templates"]
    assert remaining["selected_id"] == "default"


def test_usage_without_subscription(client: TestClient) -> None:
    response = client.get("/usage", headers={"X-User-Id": "user-1"})
    assert response.status_code == 404


def test_unexpected_failure_ends_stream_with_error_event(client: TestClient, provider: MockProvider) -> None:
    provider.queue(RuntimeError("connection dropped"))

    response = client.post(f"/projects/{PROJECT_ID}/messages", json={"content": "Hello"})

    assert response.status_code == 200
    events = _events(response)
    assert events[-2] == {"event": "error", "message": GENERIC_SERVICE_MESSAGE}
    assert events[-1] == {"event": "done", "state": "idle"}
