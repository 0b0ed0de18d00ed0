"""Background runner for pipeline runs started over HTTP.

Each run executes on its own thread. Runs share only the read-only definition
held by the pipeline service; each keeps its own execution context.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pipeline_orchestrator.orchestrator.service import PipelineService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class InFlightRun:
    run_id: str
    started_at: datetime
    status: str = "running"
    error: str | None = None


@dataclass
class RunTracker:
    """Track runs whose record has not been persisted yet."""

    _runs: dict[str, InFlightRun] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def start(self, run_id: str) -> InFlightRun:
        with self._lock:
            run = InFlightRun(run_id=run_id, started_at=datetime.now(tz=UTC))
            self._runs[run_id] = run
            return run

    def finish(self, run_id: str) -> None:
        with self._lock:
            self._runs.pop(run_id, None)

    def crash(self, run_id: str, error: str) -> None:
        with self._lock:
            current = self._runs.get(run_id)
            started = current.started_at if current else datetime.now(tz=UTC)
            self._runs[run_id] = InFlightRun(
                run_id=run_id, started_at=started, status="failed", error=error
            )

    def get(self, run_id: str) -> InFlightRun | None:
        with self._lock:
            return self._runs.get(run_id)

    def list(self) -> list[InFlightRun]:
        with self._lock:
            return list(self._runs.values())


def start_run(
    *,
    service: PipelineService,
    tracker: RunTracker,
    payload: Any,
    timeout_seconds: float | None = None,
) -> str:
    run_id = uuid.uuid4().hex
    tracker.start(run_id)

    thread = threading.Thread(
        target=_run,
        name=f"pipeline-run-{run_id}",
        daemon=True,
        kwargs={
            "run_id": run_id,
            "service": service,
            "tracker": tracker,
            "payload": payload,
            "timeout_seconds": timeout_seconds,
        },
    )
    thread.start()
    return run_id


def _run(
    *,
    run_id: str,
    service: PipelineService,
    tracker: RunTracker,
    payload: Any,
    timeout_seconds: float | None,
) -> None:
    try:
        service.run(payload, run_id=run_id, timeout_seconds=timeout_seconds)
    except Exception as e:
        logger.exception("Pipeline run crashed", extra={"run_id": run_id})
        tracker.crash(run_id, str(e))
        return
    tracker.finish(run_id)
