"""Workflow domain: definition graph, task invocation boundary and executor.

- `definition`: immutable, validated graph of task states
- `loader`: JSON definition documents (native and states-language shapes)
- `invoker`: the only contact point with task collaborators
- `executor`: the state machine that walks a definition for one run
- `store`: persisted run records for audit and replay
"""

from .definition import CatchRule, StateSpec, ValidationIssue, ValidationResult, WorkflowDefinition
from .errors import DefinitionError, UnknownStateError, WorkflowError
from .executor import (
    ExecutionContext,
    Failed,
    HistoryEntry,
    RunResult,
    RunStatus,
    StepOutcome,
    Succeeded,
    WorkflowExecutor,
    replay,
)
from .invoker import (
    FailureSignal,
    RegistryTaskInvoker,
    ScriptedTaskInvoker,
    TaskError,
    TaskInvoker,
    TaskSuccess,
)

__all__ = [
    "CatchRule",
    "DefinitionError",
    "ExecutionContext",
    "Failed",
    "FailureSignal",
    "HistoryEntry",
    "RegistryTaskInvoker",
    "RunResult",
    "RunStatus",
    "ScriptedTaskInvoker",
    "StateSpec",
    "StepOutcome",
    "Succeeded",
    "TaskError",
    "TaskInvoker",
    "TaskSuccess",
    "UnknownStateError",
    "ValidationIssue",
    "ValidationResult",
    "WorkflowDefinition",
    "WorkflowError",
    "WorkflowExecutor",
    "replay",
]
