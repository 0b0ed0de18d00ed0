"""Configuration for the pipeline orchestrator.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Everything environment-specific (storage location, bucket names, where
notifications go) is injected into the task collaborators from here; the
workflow core never reads configuration itself.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorSettings(BaseSettings):
    """Settings for the pipeline orchestrator.

    Environment variables:
    - LOG_LEVEL                        (optional)
    - PIPELINE_DEFINITION_PATH         (optional; canonical ETL pipeline when unset)
    - PIPELINE_STORAGE_ROOT            (optional)
    - PIPELINE_RESULTS_BUCKET          (optional)
    - PIPELINE_NOTIFICATION_PATH       (optional; notifications are logged when unset)
    - PIPELINE_RUNS_PATH               (optional)
    - PIPELINE_TASK_TIMEOUT_SECONDS    (optional)
    - PIPELINE_MAX_STEPS               (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `OrchestratorSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    definition_path: Path | None = Field(
        default=None,
        validation_alias="PIPELINE_DEFINITION_PATH",
        description="JSON workflow definition; the built-in ETL pipeline is used when unset",
    )

    storage_root: Path = Field(
        default=Path("data"),
        validation_alias="PIPELINE_STORAGE_ROOT",
        description="Directory backing the local object store (one sub-directory per bucket)",
    )
    results_bucket: str = Field(
        default="results",
        validation_alias="PIPELINE_RESULTS_BUCKET",
        description="Bucket the load stage writes transformed records to",
    )

    notification_path: Path | None = Field(
        default=None,
        validation_alias="PIPELINE_NOTIFICATION_PATH",
        description="JSON-lines file notifications are appended to; logged when unset",
    )

    runs_path: Path = Field(
        default=Path("runs"),
        validation_alias="PIPELINE_RUNS_PATH",
        description="Directory where finished run records are persisted",
    )

    task_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        validation_alias="PIPELINE_TASK_TIMEOUT_SECONDS",
        description="Timeout for each task invocation, in seconds (no timeout when unset)",
    )
    max_steps: int = Field(
        default=1000,
        ge=1,
        validation_alias="PIPELINE_MAX_STEPS",
        description="Upper bound on task invocations per run",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("results_bucket")
    @classmethod
    def _require_bucket_name(cls, value: str) -> str:
        value = value.strip()
        if not value or "/" in value:
            raise ValueError("PIPELINE_RESULTS_BUCKET must be a non-empty name without '/'")
        return value
