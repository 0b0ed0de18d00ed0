from __future__ import annotations

import json
import time
from collections.abc import Callable
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from pipeline_orchestrator.orchestrator.workflow.errors import DefinitionError
from pipeline_orchestrator.server.app import create_app


def _wait_for_run(client: TestClient, run_id: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        run = client.get(f"/api/v1/runs/{run_id}").json()
        if run["status"] != "running" or time.monotonic() > deadline:
            return run
        time.sleep(0.02)


def test_health_and_definition(pipeline_env: Path) -> None:
    client = TestClient(create_app())

    health = client.get("/api/v1/health").json()
    assert health["status"] == "ok"
    assert "version" in health

    definition = client.get("/api/v1/definition").json()
    assert definition["startState"] == "extract"
    assert set(definition["states"]) == {
        "extract",
        "transform",
        "load",
        "notify_success",
        "notify_failure",
    }


def test_run_lifecycle(pipeline_env: Path, write_object: Callable[[str, str, str], Path]) -> None:
    write_object("in", "a.csv", "name\nana\n")
    client = TestClient(create_app())

    accepted = client.post("/api/v1/runs", json={"payload": {"bucket": "in", "key": "a.csv"}})
    assert accepted.status_code == 202
    run_id = accepted.json()["run_id"]
    assert accepted.json()["status"] == "running"

    run = _wait_for_run(client, run_id)
    assert run["status"] == "succeeded"
    assert run["output_payload"] == {"message": "Success notification sent"}
    assert [h["state"] for h in run["history"]] == [
        "extract",
        "transform",
        "load",
        "notify_success",
    ]

    runs = client.get("/api/v1/runs").json()
    assert [r["run_id"] for r in runs] == [run_id]
    assert (pipeline_env / "data" / "results" / "a.csv").exists()


def test_failed_stage_is_reported_through_the_api(pipeline_env: Path) -> None:
    client = TestClient(create_app())

    run_id = client.post(
        "/api/v1/runs", json={"payload": {"bucket": "in", "key": "missing.csv"}}
    ).json()["run_id"]

    run = _wait_for_run(client, run_id)
    assert run["status"] == "succeeded"
    assert run["history"][0] == {
        "state": "extract",
        "outcome": "failure",
        "error_class": "object_not_found",
        "cause": "in/missing.csv does not exist",
    }
    assert run["history"][-1]["state"] == "notify_failure"


def test_unknown_run_is_404(pipeline_env: Path) -> None:
    client = TestClient(create_app())

    resp = client.get("/api/v1/runs/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Run not found"


def test_invalid_run_request_is_rejected(pipeline_env: Path) -> None:
    client = TestClient(create_app())

    resp = client.post("/api/v1/runs", json={"payload": {}, "timeout_seconds": 0})
    assert resp.status_code == 422


def test_invalid_definition_prevents_startup(
    pipeline_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    path = pipeline_env / "broken.json"
    path.write_text(
        json.dumps({"startState": "a", "states": {"a": {"taskRef": "a", "onSuccess": "b"}}}),
        encoding="utf-8",
    )
    monkeypatch.setenv("PIPELINE_DEFINITION_PATH", str(path))

    with pytest.raises(DefinitionError):
        create_app()
