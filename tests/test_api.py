# tests/test_api.py

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from main import create_app


@pytest.fixture()
def client(config):
    app = create_app(config, start_engine=False)
    with TestClient(app) as test_client:
        yield test_client


def test_enqueue_then_list_and_get(client: TestClient) -> None:
    resp = client.post("/api/v1/tasks", json={"kind": "install_edgeapp", "args": {"id": "wiki"}})
    assert resp.status_code == 201
    created = resp.json()
    assert created["status"] == "created"
    assert created["args"] == '{"id": "wiki"}'

    listed = client.get("/api/v1/tasks").json()
    assert listed["total"] == 1
    assert listed["tasks"][0]["id"] == created["id"]

    assert client.get(f"/api/v1/tasks/{created['id']}").json()["kind"] == "install_edgeapp"


def test_enqueue_requires_kind(client: TestClient) -> None:
    assert client.post("/api/v1/tasks", json={"kind": ""}).status_code == 422


def test_blank_kind_is_rejected_before_enqueue(client: TestClient) -> None:
    assert client.post("/api/v1/tasks", json={"kind": "   "}).status_code == 422
    assert client.get("/api/v1/tasks").json()["total"] == 0


def test_kind_is_stored_trimmed(client: TestClient) -> None:
    created = client.post("/api/v1/tasks", json={"kind": " check_updates "}).json()
    assert created["kind"] == "check_updates"


def test_unknown_task_is_404(client: TestClient) -> None:
    assert client.get("/api/v1/tasks/999").status_code == 404


def test_options_are_readable(client: TestClient) -> None:
    client.app.state.options.set_ip_address("192.168.1.20")

    listed = client.get("/api/v1/options").json()
    assert [o["name"] for o in listed["options"]] == ["IP_ADDRESS"]
    assert client.get("/api/v1/options/IP_ADDRESS").json()["value"] == "192.168.1.20"
    assert client.get("/api/v1/options/HOSTNAME").status_code == 404


def test_engine_snapshot(client: TestClient) -> None:
    snap = client.get("/api/v1/engine").json()
    assert snap["running"] is False
    assert snap["continuations"] == []


def test_branding(client: TestClient) -> None:
    assert client.get("/api/v1/system/branding").json()["release"] == "prod"
