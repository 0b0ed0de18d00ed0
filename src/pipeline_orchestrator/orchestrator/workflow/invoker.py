"""Task invocation boundary.

The executor never calls a collaborator directly. It goes through a
:class:`TaskInvoker`, which turns every outcome (including crashes, timeouts and
cancellation) into data: either :class:`TaskSuccess` or :class:`FailureSignal`.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

logger = logging.getLogger(__name__)

ERROR_UNHANDLED = "unhandled"
ERROR_TIMEOUT = "timeout"
ERROR_CANCELLED = "cancelled"
ERROR_TASK_NOT_FOUND = "task_not_found"

Payload: TypeAlias = Any
TaskFn: TypeAlias = Callable[[Payload], Payload]


@dataclass(frozen=True, slots=True)
class TaskSuccess:
    payload: Payload


@dataclass(frozen=True, slots=True)
class FailureSignal:
    """A classified task failure.

    `error_class` is matched against catch rules; `cause` is for humans.
    """

    error_class: str
    cause: str | None = None


TaskOutcome: TypeAlias = TaskSuccess | FailureSignal


class TaskError(Exception):
    """Raised by task collaborators to report a classified failure."""

    def __init__(self, error_class: str, cause: str | None = None) -> None:
        super().__init__(cause or error_class)
        self.error_class = error_class
        self.cause = cause


@dataclass(frozen=True, slots=True)
class InvocationControl:
    """Per-invocation timeout and run-wide cancellation.

    `timeout_seconds` bounds each task invocation separately, so a catch target
    reached after a timeout still gets its own full budget.
    """

    timeout_seconds: float | None = None
    cancel_event: threading.Event | None = None

    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


class TaskInvoker(ABC):
    """Resolve a task reference and run it against a payload.

    Implementations must not raise: every outcome is returned as data.
    """

    @abstractmethod
    def invoke(
        self, task_ref: str, payload: Payload, *, control: InvocationControl | None = None
    ) -> TaskOutcome:
        """Invoke a task.

        Args:
            task_ref: Opaque task reference taken from the state definition.
            payload: Current run payload.
            control: Optional timeout / cancellation for the run.

        Returns:
            TaskSuccess with the task output, or a FailureSignal.
        """
        pass


def classify_exception(exc: BaseException) -> FailureSignal:
    if isinstance(exc, TaskError):
        return FailureSignal(error_class=exc.error_class, cause=exc.cause)
    message = str(exc)
    cause = f"{exc.__class__.__name__}: {message}" if message else exc.__class__.__name__
    return FailureSignal(error_class=ERROR_UNHANDLED, cause=cause)


class RegistryTaskInvoker(TaskInvoker):
    """Dispatch task references to plain callables (`payload -> payload`).

    With a timeout, the callable runs on a daemon thread and the invoker stops
    waiting once the timeout elapses. Python threads cannot be killed, so a
    timed-out callable may keep running in the background; its result is
    discarded and it never holds up interpreter exit.
    """

    def __init__(self, tasks: Mapping[str, TaskFn]) -> None:
        self._tasks: dict[str, TaskFn] = dict(tasks)

    def missing(self, refs: Iterable[str]) -> list[str]:
        return sorted(ref for ref in set(refs) if ref not in self._tasks)

    def invoke(
        self, task_ref: str, payload: Payload, *, control: InvocationControl | None = None
    ) -> TaskOutcome:
        fn = self._tasks.get(task_ref)
        if fn is None:
            return FailureSignal(
                error_class=ERROR_TASK_NOT_FOUND, cause=f"No task registered for {task_ref!r}"
            )

        if control is not None and control.cancelled():
            return FailureSignal(error_class=ERROR_CANCELLED, cause="Run was cancelled")

        if control is None or control.timeout_seconds is None:
            return self._call(task_ref, fn, payload)
        return self._call_with_timeout(task_ref, fn, payload, control.timeout_seconds)

    def _call(self, task_ref: str, fn: TaskFn, payload: Payload) -> TaskOutcome:
        try:
            return TaskSuccess(payload=fn(payload))
        except Exception as e:
            signal = classify_exception(e)
            if signal.error_class == ERROR_UNHANDLED:
                logger.exception(
                    "Task raised an unclassified exception", extra={"task_ref": task_ref}
                )
            return signal

    def _call_with_timeout(
        self, task_ref: str, fn: TaskFn, payload: Payload, timeout_seconds: float
    ) -> TaskOutcome:
        result: list[TaskOutcome] = []
        worker = threading.Thread(
            target=lambda: result.append(self._call(task_ref, fn, payload)),
            name=f"task-{task_ref}",
            daemon=True,
        )
        worker.start()
        worker.join(timeout=timeout_seconds)
        if not result:
            logger.warning(
                "Task exceeded its timeout",
                extra={"task_ref": task_ref, "timeout_seconds": timeout_seconds},
            )
            return FailureSignal(
                error_class=ERROR_TIMEOUT,
                cause=f"Task {task_ref!r} exceeded {timeout_seconds}s",
            )
        return result[0]


ScriptEntry: TypeAlias = TaskOutcome | Sequence[TaskOutcome] | Callable[[Payload], TaskOutcome]


@dataclass
class ScriptedTaskInvoker(TaskInvoker):
    """Test double returning scripted outcomes per task reference.

    A script entry is either a single outcome (returned on every call), a
    sequence of outcomes (consumed in order, the last one repeating), or a
    callable computing the outcome from the payload.
    """

    script: Mapping[str, ScriptEntry]
    calls: list[tuple[str, Payload]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._cursor: dict[str, int] = {}

    def invoke(
        self, task_ref: str, payload: Payload, *, control: InvocationControl | None = None
    ) -> TaskOutcome:
        with self._lock:
            self.calls.append((task_ref, payload))
            entry = self.script.get(task_ref)
            if isinstance(entry, Sequence) and entry:
                idx = self._cursor.get(task_ref, 0)
                self._cursor[task_ref] = idx + 1
                entry = entry[min(idx, len(entry) - 1)]

        if control is not None and control.cancelled():
            return FailureSignal(error_class=ERROR_CANCELLED, cause="Run was cancelled")

        if isinstance(entry, TaskSuccess | FailureSignal):
            return entry
        if callable(entry):
            try:
                return entry(payload)
            except Exception as e:
                return classify_exception(e)
        return FailureSignal(error_class=ERROR_TASK_NOT_FOUND, cause=f"No script for {task_ref!r}")

    @property
    def invoked_refs(self) -> list[str]:
        return [ref for ref, _ in self.calls]
