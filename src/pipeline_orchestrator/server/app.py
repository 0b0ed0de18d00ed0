"""FastAPI app factory.

Endpoints are intentionally thin wrappers over the pipeline service.
"""

from __future__ import annotations

import logging
from typing import cast

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from pipeline_orchestrator import __version__
from pipeline_orchestrator.orchestrator.service import PipelineService
from pipeline_orchestrator.orchestrator.workflow.loader import definition_to_dict
from pipeline_orchestrator.orchestrator.workflow.store import RunRecord, RunStore
from pipeline_orchestrator.server.config import ServerSettings
from pipeline_orchestrator.server.models import (
    ApiHistoryEntry,
    ApiRun,
    RunAccepted,
    RunRequest,
    RunStatusLiteral,
)
from pipeline_orchestrator.server.run_runner import InFlightRun, RunTracker, start_run

logger = logging.getLogger(__name__)


def _record_to_api(record: RunRecord) -> ApiRun:
    return ApiRun(
        run_id=record.run_id,
        status=cast(RunStatusLiteral, record.status),
        started_at=record.started_at,
        finished_at=record.finished_at,
        output_payload=record.output_payload,
        failed_state=record.failed_state,
        error_class=record.error_class,
        cause=record.cause,
        history=[
            ApiHistoryEntry(
                state=h.state, outcome=h.outcome.value, error_class=h.error_class, cause=h.cause
            )
            for h in record.history
        ],
    )


def _in_flight_to_api(run: InFlightRun) -> ApiRun:
    return ApiRun(
        run_id=run.run_id,
        status=cast(RunStatusLiteral, run.status),
        started_at=run.started_at,
        cause=run.error,
    )


def create_app(settings: ServerSettings | None = None) -> FastAPI:
    """Build the app.

    The workflow definition is loaded and validated here, so an invalid
    definition prevents the server from starting (DefinitionError).
    """

    settings = settings or ServerSettings()

    service = PipelineService.from_settings(settings)
    store = cast(RunStore, service.store)
    tracker = RunTracker()

    app = FastAPI(
        title="Pipeline Orchestrator",
        version=__version__,
        description="REST trigger for declarative extract/transform/load pipelines.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    # Expose settings and the service for request handlers that want to read them.
    app.state.settings = settings
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.get("/api/v1/definition")
    def get_definition() -> dict[str, object]:
        return definition_to_dict(service.definition)

    @app.post("/api/v1/runs", response_model=RunAccepted, status_code=202)
    def create_run(req: RunRequest) -> RunAccepted:
        run_id = start_run(
            service=service,
            tracker=tracker,
            payload=req.payload,
            timeout_seconds=req.timeout_seconds,
        )
        logger.info("Run accepted", extra={"run_id": run_id})
        return RunAccepted(run_id=run_id, status="running")

    @app.get("/api/v1/runs", response_model=list[ApiRun])
    def list_runs() -> list[ApiRun]:
        persisted = [_record_to_api(r) for r in store.list()]
        known = {r.run_id for r in persisted}
        pending = [_in_flight_to_api(r) for r in tracker.list() if r.run_id not in known]
        return persisted + pending

    @app.get("/api/v1/runs/{run_id}", response_model=ApiRun)
    def get_run(run_id: str) -> ApiRun:
        in_flight = tracker.get(run_id)
        if in_flight is not None:
            return _in_flight_to_api(in_flight)
        record = store.get(run_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return _record_to_api(record)

    return app
