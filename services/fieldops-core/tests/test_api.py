import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import FakeRouting, sample_route
from fieldops import api
from fieldops.agents.classifier import IntentClassifier
from fieldops.audit import AuditSink
from fieldops.broadcaster import ResponseBroadcaster
from fieldops.config import settings
from fieldops.memory.scene_tracker import SceneContextTracker
from fieldops.memory.workflow_store import WorkflowStore
from fieldops.observability import metrics_endpoint
from fieldops.orchestrator import Orchestrator

PREFIX = settings.api_prefix


@pytest.fixture()
def orchestrator(engine, session_store, build_executor):
    executor = build_executor(routing=FakeRouting(route=sample_route()))
    return Orchestrator(
        session_store=session_store,
        workflow_store=WorkflowStore(engine),
        scene_tracker=SceneContextTracker(),
        classifier=IntentClassifier(None),
        executor=executor,
        broadcaster=ResponseBroadcaster(),
        audit=AuditSink(engine),
    )


@pytest.fixture()
def client(orchestrator):
    application = FastAPI()
    application.include_router(api.router, prefix=PREFIX)
    application.add_api_route("/metrics", metrics_endpoint, include_in_schema=False)
    application.state.orchestrator = orchestrator
    with TestClient(application) as test_client:
        yield test_client


def test_health_endpoint(client):
    resp = client.get(f"{PREFIX}/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "classifier": "heuristic"}


def test_sync_input_returns_normalized_response(client):
    resp = client.post(
        f"{PREFIX}/inputs/sync",
        json={"tenant_id": "t1", "user_id": "u1", "input_kind": "voice", "content": "navigate to the courthouse"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["tenant_id"] == "t1"
    assert body["response_kind"] == "navigation"
    assert "4.2 km" in body["content"]


def test_async_input_is_accepted(client):
    resp = client.post(f"{PREFIX}/inputs", json={"tenant_id": "t1", "user_id": "u1", "content": "rate 5"})
    assert resp.status_code == 202
    assert resp.json() == {"status": "accepted", "tenant_id": "t1", "user_id": "u1"}


def test_invalid_input_kind_is_rejected(client):
    resp = client.post(
        f"{PREFIX}/inputs/sync",
        json={"tenant_id": "t1", "user_id": "u1", "input_kind": "telepathy", "content": "hi"},
    )
    assert resp.status_code == 422


def test_workflow_endpoints(client):
    assert client.get(f"{PREFIX}/workflow/t1/u1").status_code == 404
    suggestions = client.get(f"{PREFIX}/workflow/t1/u1/suggestions").json()
    assert [item["label"] for item in suggestions] == ["Search Statutes", "Check Weather"]

    client.post(f"{PREFIX}/inputs/sync", json={"tenant_id": "t1", "user_id": "u1", "content": "suspect detained"})
    state = client.get(f"{PREFIX}/workflow/t1/u1").json()
    assert state["current_step"] == "suspect_detained"

    assert client.delete(f"{PREFIX}/workflow/t1/u1").status_code == 204
    assert client.get(f"{PREFIX}/workflow/t1/u1").status_code == 404


def test_scene_and_session_reset(client):
    scene = client.get(f"{PREFIX}/scene/t1/u1").json()
    assert scene["scenario_type"] == "patrol"
    assert client.delete(f"{PREFIX}/sessions/t1/u1").status_code == 204


def test_websocket_stream_receives_responses(client, orchestrator):
    with client.websocket_connect(f"{PREFIX}/responses/stream?tenant_id=t1&user_id=u1") as websocket:
        websocket.send_json({"type": "input", "content": "navigate to HQ", "input_kind": "voice"})
        message = websocket.receive_json()

    assert message["type"] == "response"
    assert message["data"]["response_kind"] == "navigation"
    assert message["data"]["user_id"] == "u1"


def test_websocket_rejects_malformed_input(client):
    with client.websocket_connect(f"{PREFIX}/responses/stream?tenant_id=t1&user_id=u1") as websocket:
        websocket.send_json({"type": "input", "content": "hi", "input_kind": "telepathy"})
        message = websocket.receive_json()

    assert message["type"] == "error"


def test_metrics_endpoint(client):
    client.post(f"{PREFIX}/inputs/sync", json={"tenant_id": "t1", "user_id": "u1", "content": "rate 4"})
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "fieldops_inputs_processed_total" in resp.text
