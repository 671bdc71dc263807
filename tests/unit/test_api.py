from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeProvider, FakeTaskSource, catalog_info, external_item
from fastapi.testclient import TestClient

from taskbridge.orchestrator.config import TaskBridgeSettings
from taskbridge.orchestrator.workflow.engine import TaskLifecycleOrchestrator
from taskbridge.server.app import create_app


@pytest.fixture
def client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    orchestrator: TaskLifecycleOrchestrator,
) -> TestClient:
    monkeypatch.chdir(tmp_path)
    return TestClient(create_app(orchestrator=orchestrator, settings=TaskBridgeSettings()))


def test_health(client: TestClient) -> None:
    assert client.get("/api/health").json() == {"status": "ok"}


def test_sync_then_list_and_show(
    client: TestClient, task_source: FakeTaskSource, provider: FakeProvider
) -> None:
    provider.repositories = [catalog_info("auth-service", "login")]
    task_source.items = [
        external_item("DEV-1", "login broken"),
        external_item("DEV-2", "Quarterly report export"),
    ]

    synced = client.post("/api/sync").json()
    assert synced["ok"] is True
    assert synced["created"] == 2

    tasks = client.get("/api/tasks").json()
    assert [t["external_key"] for t in tasks] == ["DEV-2", "DEV-1"]

    parked = client.get("/api/tasks", params={"state": "awaiting-approval"}).json()
    assert [t["external_key"] for t in parked] == ["DEV-2"]

    detail = client.get(f"/api/tasks/{tasks[1]['id']}").json()
    assert detail["lifecycle_state"] == "in-progress"
    assert detail["branch_name"] == "feature/dev-1-login-broken"
    assert [p["action_kind"] for p in detail["progress"]] == [
        "sync",
        "repository-assignment",
        "branch-creation",
    ]

    stats = client.get("/api/stats").json()
    assert stats["in-progress"] == 1
    assert stats["awaiting-approval"] == 1

    repos = client.get("/api/repositories").json()
    assert [r["name"] for r in repos] == ["auth-service"]


def test_reject_and_approve_endpoints(client: TestClient, task_source: FakeTaskSource) -> None:
    task_source.items = [external_item("DEV-3", "nothing matches")]
    client.post("/api/sync")
    task = client.get("/api/tasks").json()[0]
    detail = client.get(f"/api/tasks/{task['id']}").json()
    entry_id = detail["progress"][-1]["id"]

    resp = client.post(
        f"/api/tasks/{task['id']}/progress/{entry_id}/reject", json={"reason": "duplicate"}
    )
    assert resp.status_code == 200
    assert resp.json()["lifecycle_state"] == "rejected"

    # Already decided.
    resp = client.post(f"/api/tasks/{task['id']}/progress/{entry_id}/approve")
    assert resp.status_code == 409


def test_reject_requires_reason(client: TestClient) -> None:
    resp = client.post("/api/tasks/1/progress/1/reject", json={"reason": ""})
    assert resp.status_code == 422


def test_unknown_task(client: TestClient) -> None:
    assert client.get("/api/tasks/999").status_code == 404
    assert client.post("/api/tasks/999/progress/1/approve").status_code == 404


def test_process_endpoints(client: TestClient) -> None:
    assert client.post("/api/tasks/process-new").json() == {"processed": 0}
    assert client.post("/api/tasks/process-pending").json() == {"processed": 0}


def test_progress_entry_of_another_task_is_not_found(
    client: TestClient, task_source: FakeTaskSource
) -> None:
    task_source.items = [external_item("DEV-4", "nothing matches"), external_item("DEV-5", "same")]
    client.post("/api/sync")
    first, second = sorted(client.get("/api/tasks").json(), key=lambda t: t["id"])
    foreign_entry = client.get(f"/api/tasks/{second['id']}").json()["progress"][-1]["id"]

    resp = client.post(f"/api/tasks/{first['id']}/progress/{foreign_entry}/approve")
    assert resp.status_code == 404
    resp = client.post(
        f"/api/tasks/{first['id']}/progress/{foreign_entry}/reject", json={"reason": "x"}
    )
    assert resp.status_code == 404
    assert client.post(f"/api/tasks/{first['id']}/progress/9999/approve").status_code == 404

    # Both tasks are still parked.
    parked = client.get("/api/tasks", params={"state": "awaiting-approval"}).json()
    assert len(parked) == 2
