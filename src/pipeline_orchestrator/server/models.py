"""Pydantic models for the REST server."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

RunStatusLiteral = Literal["running", "succeeded", "failed"]


class RunRequest(BaseModel):
    payload: Any = None
    timeout_seconds: float | None = Field(default=None, gt=0)


class RunAccepted(BaseModel):
    run_id: str
    status: RunStatusLiteral


class ApiHistoryEntry(BaseModel):
    state: str
    outcome: str
    error_class: str | None = None
    cause: str | None = None


class ApiRun(BaseModel):
    run_id: str
    status: RunStatusLiteral
    started_at: datetime | None = None
    finished_at: datetime | None = None

    output_payload: Any = None
    failed_state: str | None = None
    error_class: str | None = None
    cause: str | None = None

    history: list[ApiHistoryEntry] = Field(default_factory=list)
