"""Reference collaborators for the canonical ETL pipeline.

Each stage is a callable `payload -> payload`. Classified failures are raised as
:class:`TaskError`; the invoker turns them into failure signals.

Payload shapes:
- extract input:   {"bucket": str, "key": str}
- extract output:  {"data": [record, ...], "source": {"bucket": str, "key": str}}
- transform output: same shape as its input, records transformed
- load output:     {"message": "written", "location": {...}, "records": int}
- notify outputs:  {"message": "<kind> notification sent"}
"""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from pipeline_orchestrator.orchestrator.workflow.invoker import TaskError

from .notifier import Notifier
from .storage import ERROR_MALFORMED_RECORD, ObjectStore

logger = logging.getLogger(__name__)

ERROR_INVALID_INPUT = "invalid_input"

SUCCESS_MESSAGE = "Success notification sent"
FAILURE_MESSAGE = "Failure notification sent"

_UNKNOWN = "unknown"


def _require_mapping(payload: Any, stage: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise TaskError(
            ERROR_INVALID_INPUT, f"{stage} expects an object payload, got {type(payload).__name__}"
        )
    return payload


def _require_str(payload: Mapping[str, Any], name: str, stage: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str) or not value.strip():
        raise TaskError(ERROR_INVALID_INPUT, f"{stage} requires a non-empty {name!r}")
    return value


def _records(payload: Mapping[str, Any], stage: str) -> list[Mapping[str, Any]]:
    data = payload.get("data")
    if not isinstance(data, Sequence) or isinstance(data, str | bytes):
        raise TaskError(ERROR_INVALID_INPUT, f"{stage} requires a 'data' list")
    for idx, record in enumerate(data):
        if not isinstance(record, Mapping):
            raise TaskError(ERROR_MALFORMED_RECORD, f"record {idx} is not an object")
    return list(data)


@dataclass(frozen=True, slots=True)
class Extract:
    """Read CSV records from the object named by the payload."""

    store: ObjectStore

    def __call__(self, payload: Any) -> dict[str, Any]:
        source = _require_mapping(payload, "extract")
        bucket = _require_str(source, "bucket", "extract")
        key = _require_str(source, "key", "extract")

        text = self.store.get_text(bucket, key)
        try:
            rows = [dict(row) for row in csv.DictReader(io.StringIO(text))]
        except csv.Error as e:
            raise TaskError(ERROR_MALFORMED_RECORD, f"{bucket}/{key}: {e}") from e

        # DictReader stores surplus fields under a None key.
        for idx, row in enumerate(rows):
            if None in row:
                raise TaskError(
                    ERROR_MALFORMED_RECORD, f"{bucket}/{key}: row {idx + 1} has extra fields"
                )

        logger.info(
            "Extracted records", extra={"bucket": bucket, "key": key, "records": len(rows)}
        )
        return {"data": rows, "source": {"bucket": bucket, "key": key}}


@dataclass(frozen=True, slots=True)
class Transform:
    """Upper-case the configured text columns of every record."""

    columns: tuple[str, ...] = ("name",)

    def __call__(self, payload: Any) -> dict[str, Any]:
        body = _require_mapping(payload, "transform")
        records = _records(body, "transform")

        transformed: list[dict[str, Any]] = []
        for record in records:
            out = dict(record)
            for column in self.columns:
                value = out.get(column)
                if isinstance(value, str):
                    out[column] = value.upper()
            transformed.append(out)

        result: dict[str, Any] = {"data": transformed}
        if "source" in body:
            result["source"] = body["source"]
        return result


@dataclass(frozen=True, slots=True)
class Load:
    """Write transformed records as CSV into the results bucket."""

    store: ObjectStore
    results_bucket: str
    default_key: str = "output.csv"

    def __call__(self, payload: Any) -> dict[str, Any]:
        body = _require_mapping(payload, "load")
        records = _records(body, "load")

        source = body.get("source")
        key = self.default_key
        if isinstance(source, Mapping) and isinstance(source.get("key"), str):
            key = source["key"]

        fieldnames: list[str] = []
        for record in records:
            for name in record:
                if name not in fieldnames:
                    fieldnames.append(name)

        buf = io.StringIO()
        writer = csv.DictWriter(buf, fieldnames=fieldnames, lineterminator="\n")
        writer.writeheader()
        writer.writerows(records)
        self.store.put_text(self.results_bucket, key, buf.getvalue())

        logger.info(
            "Loaded records",
            extra={"bucket": self.results_bucket, "key": key, "records": len(records)},
        )
        return {
            "message": "written",
            "location": {"bucket": self.results_bucket, "key": key},
            "records": len(records),
        }


@dataclass(frozen=True, slots=True)
class NotifySuccess:
    notifier: Notifier
    subject: str = "Pipeline succeeded"

    def __call__(self, payload: Any) -> dict[str, Any]:
        message = "The ETL job completed successfully."
        if isinstance(payload, Mapping) and isinstance(payload.get("location"), Mapping):
            loc = payload["location"]
            message += f" Results written to {loc.get('bucket')}/{loc.get('key')}."
        self.notifier.publish(self.subject, message)
        return {"message": SUCCESS_MESSAGE}


@dataclass(frozen=True, slots=True)
class NotifyFailure:
    """Describe that the job failed, using the failure-context payload."""

    notifier: Notifier
    subject: str = "Pipeline failed"

    def __call__(self, payload: Any) -> dict[str, Any]:
        state = _UNKNOWN
        error = _UNKNOWN
        cause = None
        if isinstance(payload, Mapping):
            state = str(payload.get("failed_state") or _UNKNOWN)
            error = str(payload.get("error") or _UNKNOWN)
            cause = payload.get("cause")

        message = f"The ETL job failed in state {state!r} with error {error!r}."
        if cause:
            message += f" Cause: {cause}"
        self.notifier.publish(self.subject, message)
        return {"message": FAILURE_MESSAGE}
