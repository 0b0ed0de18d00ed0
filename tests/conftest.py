"""Test configuration and fixtures."""

import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from pipeline_orchestrator.orchestrator.workflow.canonical import build_canonical_definition
from pipeline_orchestrator.orchestrator.workflow.definition import WorkflowDefinition
from pipeline_orchestrator.orchestrator.workflow.invoker import FailureSignal, TaskSuccess

_SETTINGS_ENV = (
    "LOG_LEVEL",
    "PIPELINE_DEFINITION_PATH",
    "PIPELINE_STORAGE_ROOT",
    "PIPELINE_RESULTS_BUCKET",
    "PIPELINE_NOTIFICATION_PATH",
    "PIPELINE_RUNS_PATH",
    "PIPELINE_TASK_TIMEOUT_SECONDS",
    "PIPELINE_MAX_STEPS",
    "PIPELINE_CORS_ORIGINS",
)


@pytest.fixture(autouse=True)
def _restore_root_logging() -> Iterator[None]:
    """Undo `configure_logging` calls made by CLI tests."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def canonical_definition() -> WorkflowDefinition:
    """Provide the built-in ETL definition."""
    return build_canonical_definition()


@pytest.fixture
def happy_script() -> dict[str, object]:
    """Scripted outcomes for a run where every task succeeds."""
    return {
        "extract": TaskSuccess({"data": [{"name": "ana"}]}),
        "transform": TaskSuccess({"data": [{"name": "ANA"}]}),
        "load": TaskSuccess({"message": "written"}),
        "notify_success": TaskSuccess({"message": "Success notification sent"}),
        "notify_failure": TaskSuccess({"message": "Failure notification sent"}),
    }


@pytest.fixture
def boom() -> FailureSignal:
    """A generic classified failure."""
    return FailureSignal(error_class="storage_unavailable", cause="bucket offline")


@pytest.fixture
def pipeline_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every orchestrator setting at a temporary directory.

    Returns the temporary root; input objects go under `<root>/data/<bucket>/`.
    """
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("PIPELINE_STORAGE_ROOT", str(tmp_path / "data"))
    monkeypatch.setenv("PIPELINE_RUNS_PATH", str(tmp_path / "runs"))
    monkeypatch.setenv("PIPELINE_NOTIFICATION_PATH", str(tmp_path / "notifications.jsonl"))
    return tmp_path


@pytest.fixture
def write_object(pipeline_env: Path) -> Callable[[str, str, str], Path]:
    """Write an object into the temporary local object store."""

    def _write(bucket: str, key: str, text: str) -> Path:
        path = pipeline_env / "data" / bucket / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write
