"""Pipeline service: one place that wires definition, invoker, executor and store.

Both the CLI and the HTTP server go through this service so that runs started
from either entry point are configured, logged and persisted the same way.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pipeline_orchestrator.orchestrator.config import OrchestratorSettings
from pipeline_orchestrator.orchestrator.workflow.canonical import build_canonical_definition
from pipeline_orchestrator.orchestrator.workflow.definition import WorkflowDefinition
from pipeline_orchestrator.orchestrator.workflow.executor import (
    RunResult,
    WorkflowExecutor,
    replay,
)
from pipeline_orchestrator.orchestrator.workflow.invoker import RegistryTaskInvoker, TaskInvoker
from pipeline_orchestrator.orchestrator.workflow.loader import load_definition
from pipeline_orchestrator.orchestrator.workflow.store import RunRecord, RunStore
from pipeline_orchestrator.tasks.factory import TaskFactory

logger = logging.getLogger(__name__)


def resolve_definition(
    settings: OrchestratorSettings, *, path: Path | None = None
) -> WorkflowDefinition:
    """Load the configured definition, falling back to the canonical ETL pipeline.

    Raises:
        DefinitionError: if the configured document is missing or invalid.
    """

    chosen = path or settings.definition_path
    if chosen is None:
        return build_canonical_definition()
    return load_definition(chosen)


@dataclass(frozen=True, slots=True)
class ReplayReport:
    run_id: str
    reproduced: bool
    recorded_status: str
    replayed: RunResult


class PipelineService:
    """High-level, testable pipeline execution."""

    def __init__(
        self,
        *,
        definition: WorkflowDefinition,
        invoker: TaskInvoker,
        store: RunStore | None = None,
        max_steps: int = 1000,
        timeout_seconds: float | None = None,
    ) -> None:
        self.definition = definition
        self.invoker = invoker
        self.store = store
        self.timeout_seconds = timeout_seconds
        self.executor = WorkflowExecutor(definition, invoker, max_steps=max_steps)

    @classmethod
    def from_settings(
        cls,
        settings: OrchestratorSettings,
        *,
        definition_path: Path | None = None,
        record: bool = True,
    ) -> PipelineService:
        definition = resolve_definition(settings, path=definition_path)
        invoker = RegistryTaskInvoker(TaskFactory.create(settings))

        missing = invoker.missing(definition.task_refs())
        if missing:
            # Not fatal: unresolved refs fail at runtime with a routable error class.
            logger.warning("Definition references unregistered tasks", extra={"tasks": missing})

        return cls(
            definition=definition,
            invoker=invoker,
            store=RunStore(settings.runs_path) if record else None,
            max_steps=settings.max_steps,
            timeout_seconds=settings.task_timeout_seconds,
        )

    def run(
        self,
        payload: Any,
        *,
        run_id: str | None = None,
        timeout_seconds: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RunResult:
        if timeout_seconds is None:
            timeout_seconds = self.timeout_seconds
        result = self.executor.run(
            payload,
            run_id=run_id,
            timeout_seconds=timeout_seconds,
            cancel_event=cancel_event,
        )
        if self.store is not None:
            self.store.save(RunRecord.from_result(result, input_payload=payload))
        return result

    def replay(self, run_id: str) -> ReplayReport:
        """Re-drive a persisted run and compare the terminal outcome.

        Raises:
            KeyError: if no store is configured or the run is unknown.
            pydantic.ValidationError: if the persisted record is corrupt.
        """

        if self.store is None:
            raise KeyError(run_id)
        record = self.store.load(run_id)
        history = record.history_entries()
        replayed = replay(
            self.definition, history, record.input_payload, max_steps=self.executor.max_steps
        )

        replayed_visits = [(e.state, e.outcome, e.error_class) for e in replayed.context.history]
        recorded_visits = [(e.state, e.outcome, e.error_class) for e in history]
        replayed_json = replayed.to_json()
        reproduced = (
            replayed.status.value == record.status
            and replayed_visits == recorded_visits
            and replayed_json.get("failed_state") == record.failed_state
            and replayed_json.get("error_class") == record.error_class
        )
        logger.info(
            "Run replayed",
            extra={"run_id": run_id, "reproduced": reproduced, "status": replayed.status.value},
        )
        return ReplayReport(
            run_id=run_id,
            reproduced=reproduced,
            recorded_status=record.status,
            replayed=replayed,
        )
