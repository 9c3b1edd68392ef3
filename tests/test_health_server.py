from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from fastapi.testclient import TestClient

from eventing_watcher.health.state import HealthState, format_uptime
from eventing_watcher.server import create_app
from eventing_watcher.storage.status_store import StatusRecord, StatusStore


class _FakeReconciler:
    def __init__(self, *, busy: bool = False) -> None:
        self.pass_in_progress = busy
        self.calls = 0

    async def run_pass_if_idle(self):
        self.calls += 1
        return None


def _store(tmp_path: Path) -> StatusStore:
    store = StatusStore(str(tmp_path / "health_check.sqlite"))
    store.ensure_schema()
    return store


def test_health_ok_with_summary_counts(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.append_status("a", "deployed", "Function is operating normally", 1_000)
    store.append_status("b", "deployed", "Function is operating normally", 1_000)
    store.append_status("c", "paused", "Function is operating normally", 1_000)
    store.append_status("d", "deployed", "ok", 1_000)
    store.append_status("d", "undeployed", "stopped", 2_000)

    with TestClient(create_app(store=store, health=HealthState())) as client:
        res = client.get("/health")

    assert res.status_code == 200
    body = res.json()
    assert body["status"] == {"watcher": "Healthy", "eventing": "Healthy"}
    assert body["summary"] == {"total": 4, "deployed": 2, "undeployed": 1, "paused": 1}
    assert [f["functionName"] for f in body["functions"]] == ["a", "b", "c", "d"]
    assert body["functions"][3]["status"] == "undeployed"
    assert body["uptime"].endswith("s")


def test_health_empty_store_is_healthy(tmp_path: Path) -> None:
    with TestClient(create_app(store=_store(tmp_path), health=HealthState())) as client:
        res = client.get("/health")
    assert res.status_code == 200
    assert res.json()["summary"]["total"] == 0


def test_function_in_error_makes_eventing_unhealthy(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.append_status("a", "deployed", "ok", 1)
    store.append_status("b", "error", "Error checking function: HTTP error! status: 500", 1)

    with TestClient(create_app(store=store, health=HealthState())) as client:
        res = client.get("/health")

    assert res.status_code == 503
    body = res.json()
    assert body["status"] == {"watcher": "Healthy", "eventing": "Unhealthy"}
    # Error rows count toward total only.
    assert body["summary"] == {"total": 2, "deployed": 1, "undeployed": 0, "paused": 0}


def test_failed_pass_makes_watcher_unhealthy(tmp_path: Path) -> None:
    health = HealthState()
    health.mark_pass_started()
    health.mark_pass_failed("function list fetch failed")

    with TestClient(create_app(store=_store(tmp_path), health=health)) as client:
        res = client.get("/health")

    assert res.status_code == 503
    body = res.json()
    assert body["status"]["watcher"] == "Unhealthy"
    assert body["lastPass"]["ok"] is False
    assert body["lastPass"]["reason"] == "function list fetch failed"


def test_history_endpoint(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.append_status("f1", "deployed", "ok", 1_000)
    store.append_status("f1", "paused", "paused", 2_000)

    with TestClient(create_app(store=store, health=HealthState())) as client:
        res = client.get("/functions/f1/history", params={"limit": 1})
        missing = client.get("/functions/nope/history")

    assert res.status_code == 200
    assert res.json()["history"] == [
        {
            "functionName": "f1",
            "status": "paused",
            "message": "paused",
            "timestamp": 2_000,
            "checkedAt": "1970-01-01T00:00:02+00:00",
        }
    ]
    assert missing.status_code == 404
    assert missing.json()["detail"] == "function_not_found"


def test_run_endpoint_queues_or_skips(tmp_path: Path) -> None:
    idle = _FakeReconciler()
    with TestClient(create_app(store=_store(tmp_path), health=HealthState(), reconciler=idle)) as client:
        res = client.post("/run")
    assert res.json() == {"accepted": True}
    assert idle.calls == 1

    busy = _FakeReconciler(busy=True)
    with TestClient(create_app(store=_store(tmp_path), health=HealthState(), reconciler=busy)) as client:
        res = client.post("/run")
    assert res.json() == {"accepted": False, "reason": "pass_in_progress"}
    assert busy.calls == 0


def test_run_endpoint_without_reconciler(tmp_path: Path) -> None:
    with TestClient(create_app(store=_store(tmp_path), health=HealthState())) as client:
        assert client.post("/run").status_code == 503


def test_format_uptime() -> None:
    assert format_uptime(timedelta(days=1, hours=2, minutes=3, seconds=4)) == "1d 2h 3m 4s"
    assert format_uptime(timedelta(seconds=-5)) == "0d 0h 0m 0s"


def test_health_serves_last_completed_pass_not_in_flight_rows(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.append_status("f1", "deployed", "ok", 1_000)
    store.append_status("f2", "deployed", "ok", 1_000)
    health = HealthState()

    with TestClient(create_app(store=store, health=health)) as client:
        # A running pass has written f1 but not f2 yet.
        store.append_status("f1", "error", "Error checking function: boom", 2_000)
        during = client.get("/health")

        health.mark_pass_succeeded(
            [
                StatusRecord("f1", "error", "Error checking function: boom", 2_000),
                StatusRecord("f2", "paused", "ok", 2_000),
            ]
        )
        after = client.get("/health")

    assert during.status_code == 200
    assert [(f["functionName"], f["status"]) for f in during.json()["functions"]] == [
        ("f1", "deployed"),
        ("f2", "deployed"),
    ]
    assert after.status_code == 503
    assert after.json()["summary"] == {"total": 2, "deployed": 0, "undeployed": 0, "paused": 1}
