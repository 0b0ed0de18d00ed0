"""Workflow executor.

Walks a :class:`WorkflowDefinition` from its start state, invoking each state's
task through a :class:`TaskInvoker` and applying the transition rules:

- success with a successor: advance, the task output becomes the payload
- success without a successor: the run ends `Succeeded(output)`
- failure matched by a catch rule: advance to the rule target with a
  failure-context payload
- failure matched by no rule: the run ends `Failed(state, error_class)`

There is no automatic retry. The executor keeps no per-run state on itself, so a
single instance may serve concurrent runs sharing one definition.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .definition import WorkflowDefinition
from .invoker import (
    ERROR_UNHANDLED,
    FailureSignal,
    InvocationControl,
    Payload,
    ScriptedTaskInvoker,
    TaskInvoker,
    TaskOutcome,
    TaskSuccess,
    classify_exception,
)

logger = logging.getLogger(__name__)

ERROR_STEP_LIMIT_EXCEEDED = "step_limit_exceeded"
DEFAULT_MAX_STEPS = 1000


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class StepOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class RunStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    state: str
    outcome: StepOutcome
    error_class: str | None = None
    cause: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"state": self.state, "outcome": self.outcome.value}
        if self.error_class is not None:
            out["error_class"] = self.error_class
        if self.cause is not None:
            out["cause"] = self.cause
        if self.started_at is not None:
            out["started_at"] = self.started_at.isoformat()
        if self.finished_at is not None:
            out["finished_at"] = self.finished_at.isoformat()
        return out


@dataclass
class ExecutionContext:
    """Mutable per-run state, owned exclusively by the run that created it."""

    run_id: str
    current_state: str
    payload: Payload
    history: list[HistoryEntry] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utc_now)
    finished_at: datetime | None = None

    def record(self, entry: HistoryEntry) -> None:
        self.history.append(entry)


@dataclass(frozen=True, slots=True)
class Succeeded:
    payload: Payload

    status = RunStatus.SUCCEEDED


@dataclass(frozen=True, slots=True)
class Failed:
    state: str
    error_class: str
    cause: str | None = None

    status = RunStatus.FAILED


RunOutcome = Succeeded | Failed


@dataclass(frozen=True, slots=True)
class RunResult:
    outcome: RunOutcome
    context: ExecutionContext

    @property
    def status(self) -> RunStatus:
        return self.outcome.status

    @property
    def succeeded(self) -> bool:
        return isinstance(self.outcome, Succeeded)

    @property
    def run_id(self) -> str:
        return self.context.run_id

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "run_id": self.context.run_id,
            "status": self.status.value,
        }
        if isinstance(self.outcome, Succeeded):
            out["payload"] = self.outcome.payload
        else:
            out["failed_state"] = self.outcome.state
            out["error_class"] = self.outcome.error_class
            if self.outcome.cause is not None:
                out["cause"] = self.outcome.cause
        out["history"] = [entry.to_json() for entry in self.context.history]
        return out


def failure_context(*, state: str, signal: FailureSignal) -> dict[str, object]:
    """Payload handed to a catch target in place of the original data."""

    return {"error": signal.error_class, "cause": signal.cause, "failed_state": state}


class WorkflowExecutor:
    """Run a validated definition against a task invoker."""

    def __init__(
        self,
        definition: WorkflowDefinition,
        invoker: TaskInvoker,
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> None:
        if max_steps < 1:
            raise ValueError("max_steps must be >= 1")
        self.definition = definition
        self.invoker = invoker
        self.max_steps = max_steps

    def run(
        self,
        payload: Payload,
        *,
        run_id: str | None = None,
        timeout_seconds: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RunResult:
        ctx = ExecutionContext(
            run_id=run_id or uuid.uuid4().hex,
            current_state=self.definition.start_state,
            payload=payload,
        )
        control = InvocationControl(timeout_seconds=timeout_seconds, cancel_event=cancel_event)
        log_extra = {"run_id": ctx.run_id}
        logger.info("Run started", extra={**log_extra, "state": ctx.current_state})

        outcome = self._drive(ctx, control)
        ctx.finished_at = _utc_now()

        if isinstance(outcome, Succeeded):
            logger.info(
                "Run succeeded",
                extra={**log_extra, "state": ctx.current_state, "steps": len(ctx.history)},
            )
        else:
            logger.error(
                "Run failed",
                extra={
                    **log_extra,
                    "state": outcome.state,
                    "error_class": outcome.error_class,
                    "cause": outcome.cause,
                },
            )
        return RunResult(outcome=outcome, context=ctx)

    def _drive(self, ctx: ExecutionContext, control: InvocationControl) -> RunOutcome:
        steps = 0
        while True:
            if steps >= self.max_steps:
                return Failed(
                    state=ctx.current_state,
                    error_class=ERROR_STEP_LIMIT_EXCEEDED,
                    cause=f"Run exceeded {self.max_steps} steps",
                )
            steps += 1

            # UnknownStateError here means the definition invariant was broken; let it propagate.
            spec = self.definition.resolve(ctx.current_state)

            started = _utc_now()
            result = self._invoke(spec.task_ref, ctx.payload, control)
            finished = _utc_now()

            if isinstance(result, TaskSuccess):
                ctx.record(
                    HistoryEntry(
                        state=spec.name,
                        outcome=StepOutcome.SUCCESS,
                        started_at=started,
                        finished_at=finished,
                    )
                )
                logger.debug(
                    "State succeeded", extra={"run_id": ctx.run_id, "state": spec.name}
                )
                if spec.on_success is None:
                    ctx.payload = result.payload
                    return Succeeded(payload=result.payload)
                ctx.current_state = spec.on_success
                ctx.payload = result.payload
                continue

            ctx.record(
                HistoryEntry(
                    state=spec.name,
                    outcome=StepOutcome.FAILURE,
                    error_class=result.error_class,
                    cause=result.cause,
                    started_at=started,
                    finished_at=finished,
                )
            )
            rule = spec.first_matching_rule(result.error_class)
            if rule is None:
                return Failed(state=spec.name, error_class=result.error_class, cause=result.cause)

            logger.warning(
                "State failed; routing to catch target",
                extra={
                    "run_id": ctx.run_id,
                    "state": spec.name,
                    "error_class": result.error_class,
                    "target": rule.target,
                },
            )
            ctx.current_state = rule.target
            ctx.payload = failure_context(state=spec.name, signal=result)

    def _invoke(self, task_ref: str, payload: Payload, control: InvocationControl) -> TaskOutcome:
        try:
            outcome = self.invoker.invoke(task_ref, payload, control=control)
        except Exception as e:
            # Invokers must not raise; treat a broken one like any unclassified task crash.
            logger.exception("Task invoker raised", extra={"task_ref": task_ref})
            return classify_exception(e)
        if not isinstance(outcome, TaskSuccess | FailureSignal):
            return FailureSignal(
                error_class=ERROR_UNHANDLED,
                cause=f"Invoker returned {type(outcome).__name__}, expected a task outcome",
            )
        return outcome


def replay(
    definition: WorkflowDefinition,
    history: Sequence[HistoryEntry],
    payload: Payload = None,
    *,
    max_steps: int = DEFAULT_MAX_STEPS,
) -> RunResult:
    """Re-drive a definition with the task outcomes recorded in `history`.

    Task outputs are not part of the history, so successful steps replay with a
    `None` payload. The terminal status, failing state and error class, and the
    sequence of visited states are reproduced exactly.
    """

    script: dict[str, list[TaskOutcome]] = {}
    for entry in history:
        spec = definition.resolve(entry.state)
        if entry.outcome is StepOutcome.SUCCESS:
            outcome: TaskOutcome = TaskSuccess(payload=None)
        else:
            outcome = FailureSignal(
                error_class=entry.error_class or ERROR_UNHANDLED, cause=entry.cause
            )
        script.setdefault(spec.task_ref, []).append(outcome)

    invoker = ScriptedTaskInvoker(script=script)
    return WorkflowExecutor(definition, invoker, max_steps=max_steps).run(payload)
