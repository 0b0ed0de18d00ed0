from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .definition import ValidationResult


class WorkflowError(Exception):
    """Base class for orchestration errors."""


class DefinitionError(WorkflowError):
    """The workflow definition violates a structural invariant.

    Definition errors are fatal: a run must never start against an invalid graph.
    """

    def __init__(self, message: str, *, result: ValidationResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class UnknownStateError(DefinitionError, KeyError):
    """A state name could not be resolved in the definition."""

    def __init__(self, state: str) -> None:
        super().__init__(f"Unknown state: {state!r}")
        self.state = state

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0])
