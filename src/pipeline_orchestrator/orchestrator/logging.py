"""Structured logging configuration.

Uses standard library logging with a JSON formatter. Fields passed through
`extra=` are split in two groups: run context (run id, state, task, error class)
goes under `run`, everything else under `extra`.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

# Attributes every LogRecord carries, plus the ones Formatter adds while formatting.
_STANDARD_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
}

RUN_CONTEXT_FIELDS: tuple[str, ...] = ("run_id", "state", "task_ref", "error_class", "cause")


class JsonFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        run: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if key in RUN_CONTEXT_FIELDS:
                run[key] = value
            else:
                extra[key] = value
        if run:
            payload["run"] = run
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # Payload values are opaque; anything json can't encode is rendered with str().
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str, *, stream: TextIO | None = None) -> None:
    """Send JSON log lines to `stream` (stderr by default) at `level`.

    Replaces any handlers already on the root logger, so calling it twice does
    not duplicate output. stdout stays reserved for command output.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    root.setLevel(level.upper())

    # Per-request access lines from the HTTP server only show up at WARNING and above.
    logging.getLogger("uvicorn.access").setLevel(max(root.level, logging.WARNING))
