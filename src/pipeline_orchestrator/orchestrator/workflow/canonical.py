"""The canonical extract -> transform -> load pipeline.

Every data stage routes any failure to `notify_failure`. Both notification
stages are terminal and have no catch rules, so a failing notification ends the
run as failed.
"""

from __future__ import annotations

from .definition import CatchRule, StateSpec, WorkflowDefinition

EXTRACT = "extract"
TRANSFORM = "transform"
LOAD = "load"
NOTIFY_SUCCESS = "notify_success"
NOTIFY_FAILURE = "notify_failure"

DATA_STAGES: tuple[str, ...] = (EXTRACT, TRANSFORM, LOAD)

_CATCH_ALL = (CatchRule(error_equals=("States.ALL",), target=NOTIFY_FAILURE),)


def build_canonical_definition() -> WorkflowDefinition:
    return WorkflowDefinition.from_states(
        start_state=EXTRACT,
        comment="ETL pipeline with failure notification",
        states=[
            StateSpec(EXTRACT, task_ref=EXTRACT, on_success=TRANSFORM, catch_rules=_CATCH_ALL),
            StateSpec(TRANSFORM, task_ref=TRANSFORM, on_success=LOAD, catch_rules=_CATCH_ALL),
            StateSpec(LOAD, task_ref=LOAD, on_success=NOTIFY_SUCCESS, catch_rules=_CATCH_ALL),
            StateSpec(NOTIFY_SUCCESS, task_ref=NOTIFY_SUCCESS),
            StateSpec(NOTIFY_FAILURE, task_ref=NOTIFY_FAILURE),
        ],
    )
