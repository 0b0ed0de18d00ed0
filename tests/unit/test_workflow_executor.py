"""Unit tests for the workflow executor state machine."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from pipeline_orchestrator.orchestrator.workflow.canonical import DATA_STAGES
from pipeline_orchestrator.orchestrator.workflow.definition import (
    CatchRule,
    StateSpec,
    WorkflowDefinition,
)
from pipeline_orchestrator.orchestrator.workflow.executor import (
    ERROR_STEP_LIMIT_EXCEEDED,
    Failed,
    RunStatus,
    StepOutcome,
    Succeeded,
    WorkflowExecutor,
    replay,
)
from pipeline_orchestrator.orchestrator.workflow.invoker import (
    ERROR_CANCELLED,
    ERROR_TIMEOUT,
    FailureSignal,
    RegistryTaskInvoker,
    ScriptedTaskInvoker,
    TaskSuccess,
)

SUCCESS_PATH = ["extract", "transform", "load", "notify_success"]


def _visited(result) -> list[str]:
    return [entry.state for entry in result.context.history]


def test_all_tasks_succeed_visits_success_path_in_order(
    canonical_definition: WorkflowDefinition, happy_script: dict[str, object]
) -> None:
    invoker = ScriptedTaskInvoker(script=happy_script)
    result = WorkflowExecutor(canonical_definition, invoker).run({"bucket": "in", "key": "a.csv"})

    assert result.succeeded
    assert result.status is RunStatus.SUCCEEDED
    assert _visited(result) == SUCCESS_PATH
    assert invoker.invoked_refs == SUCCESS_PATH
    assert all(e.outcome is StepOutcome.SUCCESS for e in result.context.history)


def test_end_to_end_example_threads_payload_between_stages(
    canonical_definition: WorkflowDefinition, happy_script: dict[str, object]
) -> None:
    invoker = ScriptedTaskInvoker(script=happy_script)
    result = WorkflowExecutor(canonical_definition, invoker).run({"bucket": "in", "key": "a.csv"})

    assert result.outcome == Succeeded({"message": "Success notification sent"})
    assert len(result.context.history) == 4
    assert [payload for _, payload in invoker.calls] == [
        {"bucket": "in", "key": "a.csv"},
        {"data": [{"name": "ana"}]},
        {"data": [{"name": "ANA"}]},
        {"message": "written"},
    ]
    assert result.context.finished_at is not None


@pytest.mark.parametrize("failing_state", DATA_STAGES)
def test_any_data_stage_failure_routes_to_notify_failure(
    canonical_definition: WorkflowDefinition,
    happy_script: dict[str, object],
    boom: FailureSignal,
    failing_state: str,
) -> None:
    script = {**happy_script, failing_state: boom}
    invoker = ScriptedTaskInvoker(script=script)

    result = WorkflowExecutor(canonical_definition, invoker).run({"bucket": "in", "key": "a.csv"})

    assert result.outcome == Succeeded({"message": "Failure notification sent"})
    history = result.context.history
    assert history[-1].state == "notify_failure"
    assert history[-1].outcome is StepOutcome.SUCCESS
    assert history[-2].state == failing_state
    assert history[-2].outcome is StepOutcome.FAILURE
    assert history[-2].error_class == "storage_unavailable"
    assert "notify_success" not in _visited(result)

    # The failure stage receives a description of the failure, not the data.
    ref, payload = invoker.calls[-1]
    assert ref == "notify_failure"
    assert payload == {
        "error": "storage_unavailable",
        "cause": "bucket offline",
        "failed_state": failing_state,
    }


def test_failure_in_notify_failure_ends_run_failed(
    canonical_definition: WorkflowDefinition, happy_script: dict[str, object], boom: FailureSignal
) -> None:
    script = {
        **happy_script,
        "transform": boom,
        "notify_failure": FailureSignal("notification_failed", "topic missing"),
    }
    result = WorkflowExecutor(canonical_definition, ScriptedTaskInvoker(script=script)).run({})

    assert result.outcome == Failed("notify_failure", "notification_failed", "topic missing")
    assert result.status is RunStatus.FAILED
    assert _visited(result) == ["extract", "transform", "notify_failure"]


def test_failure_in_notify_success_is_not_routed(
    canonical_definition: WorkflowDefinition, happy_script: dict[str, object], boom: FailureSignal
) -> None:
    invoker = ScriptedTaskInvoker(script={**happy_script, "notify_success": boom})
    result = WorkflowExecutor(canonical_definition, invoker).run({})

    assert isinstance(result.outcome, Failed)
    assert result.outcome.state == "notify_success"
    assert "notify_failure" not in invoker.invoked_refs


def test_unmatched_catch_rule_ends_run_failed() -> None:
    definition = WorkflowDefinition.from_states(
        start_state="work",
        states=[
            StateSpec(
                "work",
                task_ref="work",
                catch_rules=(CatchRule(error_equals=("timeout",), target="handler"),),
            ),
            StateSpec("handler", task_ref="handler"),
        ],
    )
    invoker = ScriptedTaskInvoker(
        script={"work": FailureSignal("malformed_record"), "handler": TaskSuccess({})}
    )

    result = WorkflowExecutor(definition, invoker).run({})

    assert result.outcome == Failed("work", "malformed_record")
    assert invoker.invoked_refs == ["work"]


def test_first_matching_catch_rule_wins() -> None:
    definition = WorkflowDefinition.from_states(
        start_state="work",
        states=[
            StateSpec(
                "work",
                task_ref="work",
                catch_rules=(
                    CatchRule(error_equals=("malformed_record",), target="quarantine"),
                    CatchRule(error_equals=("*",), target="notify"),
                ),
            ),
            StateSpec("quarantine", task_ref="quarantine"),
            StateSpec("notify", task_ref="notify"),
        ],
    )
    script = {
        "work": FailureSignal("malformed_record"),
        "quarantine": TaskSuccess("quarantined"),
        "notify": TaskSuccess("notified"),
    }

    result = WorkflowExecutor(definition, ScriptedTaskInvoker(script=script)).run({})

    assert result.outcome == Succeeded("quarantined")


def test_failing_task_is_never_retried(
    canonical_definition: WorkflowDefinition, happy_script: dict[str, object], boom: FailureSignal
) -> None:
    # A later scripted success would be returned if the executor retried.
    invoker = ScriptedTaskInvoker(
        script={**happy_script, "extract": [boom, TaskSuccess({"data": []})]}
    )
    WorkflowExecutor(canonical_definition, invoker).run({})

    assert invoker.invoked_refs.count("extract") == 1


def test_terminal_state_success_without_successor() -> None:
    definition = WorkflowDefinition.from_states(
        start_state="only", states=[StateSpec("only", task_ref="only")]
    )
    result = WorkflowExecutor(
        definition, ScriptedTaskInvoker(script={"only": TaskSuccess(42)})
    ).run(0)
    assert result.outcome == Succeeded(42)
    assert result.context.payload == 42


def test_cycle_through_catch_target_hits_step_limit() -> None:
    definition = WorkflowDefinition.from_states(
        start_state="a",
        states=[
            StateSpec(
                "a", task_ref="a", catch_rules=(CatchRule(error_equals=("*",), target="a"),)
            )
        ],
    )
    invoker = ScriptedTaskInvoker(script={"a": FailureSignal("flaky")})

    result = WorkflowExecutor(definition, invoker, max_steps=5).run({})

    assert result.outcome.status is RunStatus.FAILED
    assert isinstance(result.outcome, Failed)
    assert result.outcome.error_class == ERROR_STEP_LIMIT_EXCEEDED
    assert len(invoker.calls) == 5


def test_max_steps_must_be_positive(canonical_definition: WorkflowDefinition) -> None:
    with pytest.raises(ValueError):
        WorkflowExecutor(canonical_definition, ScriptedTaskInvoker(script={}), max_steps=0)


def test_cancelled_run_is_routed_like_any_failure(
    canonical_definition: WorkflowDefinition, happy_script: dict[str, object]
) -> None:
    cancel = threading.Event()
    cancel.set()
    invoker = ScriptedTaskInvoker(script=happy_script)

    result = WorkflowExecutor(canonical_definition, invoker).run({}, cancel_event=cancel)

    # The catch-all routes to notify_failure, which is itself cancelled.
    assert result.outcome == Failed("notify_failure", ERROR_CANCELLED, "Run was cancelled")
    assert result.context.history[0].error_class == ERROR_CANCELLED
    assert _visited(result) == ["extract", "notify_failure"]


def test_task_timeout_routes_to_notify_failure(
    canonical_definition: WorkflowDefinition,
) -> None:
    release = threading.Event()
    tasks = {name: (lambda payload: {"message": "sent"}) for name in canonical_definition.states}
    tasks["extract"] = lambda payload: release.wait(5)
    executor = WorkflowExecutor(canonical_definition, RegistryTaskInvoker(tasks))

    try:
        result = executor.run({}, timeout_seconds=0.2)
    finally:
        release.set()

    assert [(e.state, e.outcome, e.error_class) for e in result.context.history] == [
        ("extract", StepOutcome.FAILURE, ERROR_TIMEOUT),
        ("notify_failure", StepOutcome.SUCCESS, None),
    ]
    assert result.outcome == Succeeded({"message": "sent"})


def test_invoker_that_raises_is_treated_as_unhandled_failure(
    canonical_definition: WorkflowDefinition,
) -> None:
    class BrokenInvoker(ScriptedTaskInvoker):
        def invoke(self, task_ref, payload, *, control=None):  # type: ignore[override]
            if task_ref == "extract":
                raise RuntimeError("invoker bug")
            return TaskSuccess({"message": "Failure notification sent"})

    result = WorkflowExecutor(canonical_definition, BrokenInvoker(script={})).run({})

    assert result.context.history[0].error_class == "unhandled"
    assert result.context.history[0].cause == "RuntimeError: invoker bug"
    assert result.outcome == Succeeded({"message": "Failure notification sent"})


def test_replay_reproduces_terminal_outcome(
    canonical_definition: WorkflowDefinition, happy_script: dict[str, object], boom: FailureSignal
) -> None:
    script = {
        **happy_script,
        "load": boom,
        "notify_failure": FailureSignal("notification_failed"),
    }
    original = WorkflowExecutor(canonical_definition, ScriptedTaskInvoker(script=script)).run({})

    replayed = replay(canonical_definition, original.context.history)
    again = replay(canonical_definition, replayed.context.history)

    for result in (replayed, again):
        assert result.outcome == original.outcome
        assert [(e.state, e.outcome, e.error_class) for e in result.context.history] == [
            (e.state, e.outcome, e.error_class) for e in original.context.history
        ]


def test_concurrent_runs_share_one_executor_without_interference(
    canonical_definition: WorkflowDefinition,
) -> None:
    def slow_echo(stage: str):
        def _run(payload):
            time.sleep(0.01)
            return TaskSuccess({"trail": [*payload.get("trail", []), stage], "id": payload["id"]})

        return _run

    script = {name: slow_echo(name) for name in canonical_definition.states}
    executor = WorkflowExecutor(canonical_definition, ScriptedTaskInvoker(script=script))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda i: executor.run({"id": i}), range(16)))

    assert len({r.run_id for r in results}) == 16
    for i, result in enumerate(results):
        assert result.outcome == Succeeded({"trail": SUCCESS_PATH, "id": i})
        assert _visited(result) == SUCCESS_PATH


def test_run_result_json(
    canonical_definition: WorkflowDefinition, happy_script: dict[str, object], boom: FailureSignal
) -> None:
    script = {**happy_script, "notify_failure": boom, "extract": boom}
    result = WorkflowExecutor(canonical_definition, ScriptedTaskInvoker(script=script)).run(
        {}, run_id="run-1"
    )
    data = result.to_json()

    assert data["run_id"] == "run-1"
    assert data["status"] == "failed"
    assert data["failed_state"] == "notify_failure"
    assert data["error_class"] == "storage_unavailable"
    assert data["history"][0]["outcome"] == "failure"
