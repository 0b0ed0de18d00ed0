"""Static workflow graph.

A definition is built once (analogous to a compile step) and never mutated
afterwards. Construction validates the graph so that the executor can never hit
a dangling transition mid-run.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .errors import DefinitionError, UnknownStateError

CATCH_ALL_PATTERNS: frozenset[str] = frozenset({"*", "States.ALL"})


@dataclass(frozen=True, slots=True)
class CatchRule:
    """Route a failed task to `target` when its error class matches."""

    error_equals: tuple[str, ...]
    target: str

    def matches(self, error_class: str) -> bool:
        for pattern in self.error_equals:
            if pattern in CATCH_ALL_PATTERNS or pattern == error_class:
                return True
        return False


@dataclass(frozen=True, slots=True)
class StateSpec:
    name: str
    task_ref: str
    on_success: str | None = None
    catch_rules: tuple[CatchRule, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.on_success is None

    def first_matching_rule(self, error_class: str) -> CatchRule | None:
        for rule in self.catch_rules:
            if rule.matches(error_class):
                return rule
        return None

    def transition_targets(self) -> list[str]:
        targets: list[str] = []
        if self.on_success is not None:
            targets.append(self.on_success)
        targets.extend(rule.target for rule in self.catch_rules)
        return targets


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    code: str
    message: str
    state: str | None = None


@dataclass(frozen=True, slots=True)
class ValidationResult:
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            summary = "; ".join(issue.message for issue in self.errors)
            raise DefinitionError(f"Invalid workflow definition: {summary}", result=self)


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    """Immutable mapping of state name -> StateSpec plus a start state.

    Raises:
        DefinitionError: if the graph fails validation.
    """

    start_state: str
    states: Mapping[str, StateSpec]
    comment: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        # Freeze a private copy so callers cannot mutate the graph after validation.
        object.__setattr__(self, "states", MappingProxyType(dict(self.states)))
        self.validate().raise_for_errors()

    @classmethod
    def from_states(
        cls, *, start_state: str, states: Iterable[StateSpec], comment: str | None = None
    ) -> WorkflowDefinition:
        by_name: dict[str, StateSpec] = {}
        for spec in states:
            if spec.name in by_name:
                raise DefinitionError(f"Duplicate state name: {spec.name!r}")
            by_name[spec.name] = spec
        return cls(start_state=start_state, states=by_name, comment=comment)

    def resolve(self, name: str) -> StateSpec:
        try:
            return self.states[name]
        except KeyError:
            raise UnknownStateError(name) from None

    def validate(self) -> ValidationResult:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        if not self.start_state.strip():
            errors.append(ValidationIssue("empty_start_state", "start state must be non-empty"))
        elif self.start_state not in self.states:
            errors.append(
                ValidationIssue(
                    "unknown_start_state",
                    f"start state {self.start_state!r} does not exist",
                    state=self.start_state,
                )
            )

        for key, spec in self.states.items():
            if key != spec.name:
                errors.append(
                    ValidationIssue(
                        "name_mismatch",
                        f"state key {key!r} does not match state name {spec.name!r}",
                        state=key,
                    )
                )
            if not spec.task_ref.strip():
                errors.append(
                    ValidationIssue("empty_task_ref", f"state {key!r} has no task_ref", state=key)
                )
            if spec.on_success is not None and spec.on_success not in self.states:
                errors.append(
                    ValidationIssue(
                        "dangling_on_success",
                        f"state {key!r} transitions on success to unknown state "
                        f"{spec.on_success!r}",
                        state=key,
                    )
                )
            for rule in spec.catch_rules:
                if not rule.error_equals:
                    errors.append(
                        ValidationIssue(
                            "empty_error_match",
                            f"state {key!r} has a catch rule without error patterns",
                            state=key,
                        )
                    )
                if rule.target not in self.states:
                    errors.append(
                        ValidationIssue(
                            "dangling_catch_target",
                            f"state {key!r} catches into unknown state {rule.target!r}",
                            state=key,
                        )
                    )

        if not errors:
            reachable = self.reachable_states()
            for name in self.states:
                if name not in reachable:
                    warnings.append(
                        ValidationIssue(
                            "unreachable_state",
                            f"state {name!r} is not reachable from {self.start_state!r}",
                            state=name,
                        )
                    )

        return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))

    def reachable_states(self) -> set[str]:
        if self.start_state not in self.states:
            return set()
        seen = {self.start_state}
        queue = deque([self.start_state])
        while queue:
            spec = self.states[queue.popleft()]
            for target in spec.transition_targets():
                if target in self.states and target not in seen:
                    seen.add(target)
                    queue.append(target)
        return seen

    def task_refs(self) -> set[str]:
        return {spec.task_ref for spec in self.states.values()}
