"""Persist finished runs for audit and replay.

One JSON file per run, named after the run id.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from .executor import HistoryEntry, RunResult, StepOutcome

logger = logging.getLogger(__name__)


class HistoryRecord(BaseModel):
    state: str
    outcome: StepOutcome
    error_class: str | None = None
    cause: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class RunRecord(BaseModel):
    """Persisted representation of a finished run."""

    run_id: str
    status: str
    started_at: datetime
    finished_at: datetime | None = None

    input_payload: Any = None
    output_payload: Any = None

    failed_state: str | None = None
    error_class: str | None = None
    cause: str | None = None

    history: list[HistoryRecord] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: RunResult, *, input_payload: Any = None) -> RunRecord:
        data = result.to_json()
        ctx = result.context
        return cls(
            run_id=ctx.run_id,
            status=result.status.value,
            started_at=ctx.started_at,
            finished_at=ctx.finished_at,
            input_payload=input_payload,
            output_payload=data.get("payload"),
            failed_state=data.get("failed_state"),  # type: ignore[arg-type]
            error_class=data.get("error_class"),  # type: ignore[arg-type]
            cause=data.get("cause"),  # type: ignore[arg-type]
            history=[HistoryRecord.model_validate(e.to_json()) for e in ctx.history],
        )

    def history_entries(self) -> list[HistoryEntry]:
        return [
            HistoryEntry(
                state=h.state,
                outcome=h.outcome,
                error_class=h.error_class,
                cause=h.cause,
                started_at=h.started_at,
                finished_at=h.finished_at,
            )
            for h in self.history
        ]


class RunStore:
    """JSON-file backed store for finished run records."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    def _path_for(self, run_id: str) -> Path:
        # Run ids are generated hex strings; refuse anything that could escape the root.
        if not run_id or "/" in run_id or "\\" in run_id or run_id.startswith("."):
            raise KeyError(run_id)
        return self._root / f"{run_id}.json"

    def save(self, record: RunRecord) -> Path:
        path = self._path_for(record.run_id)
        with self._lock:
            self._root.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(record.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n",
                encoding="utf-8",
            )
        logger.info("Run record persisted", extra={"run_id": record.run_id, "path": str(path)})
        return path

    def load(self, run_id: str) -> RunRecord:
        """Load a persisted run record.

        Raises:
            KeyError: if the run is unknown.
            pydantic.ValidationError: if the file is not valid JSON or not a run
                record.
        """

        path = self._path_for(run_id)
        if not path.exists():
            raise KeyError(run_id)
        return RunRecord.model_validate_json(path.read_text(encoding="utf-8"))

    def get(self, run_id: str) -> RunRecord | None:
        try:
            return self.load(run_id)
        except KeyError:
            return None

    def list(self) -> list[RunRecord]:
        if not self._root.exists():
            return []
        records: list[RunRecord] = []
        for path in sorted(self._root.glob("*.json")):
            try:
                record = RunRecord.model_validate_json(path.read_text(encoding="utf-8"))
            except ValidationError as e:
                logger.warning(
                    "Not a valid run record; skipping",
                    extra={"path": str(path), "errors": e.error_count()},
                )
                continue
            records.append(record)
        records.sort(key=lambda r: r.started_at)
        return records
