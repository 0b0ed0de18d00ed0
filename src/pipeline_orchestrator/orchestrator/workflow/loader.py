"""Load workflow definitions from static JSON documents.

Two document shapes are understood:

- the native shape (`startState` / `states` / `taskRef` / `onSuccess` /
  `catchRules`), also accepted in snake_case
- the states-language shape used by hosted state machine services
  (`StartAt` / `States` / `Resource` / `Next` / `End` / `Catch`), restricted to
  `Task` states

Both are parsed with pydantic and converted into a validated
:class:`WorkflowDefinition`.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .definition import CatchRule, StateSpec, WorkflowDefinition
from .errors import DefinitionError

logger = logging.getLogger(__name__)


class _CatchRuleDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error_match: list[str] = Field(validation_alias=AliasChoices("errorMatch", "error_match"))
    target: str

    @field_validator("error_match", mode="before")
    @classmethod
    def _coerce_single_pattern(cls, value: object) -> object:
        if isinstance(value, str):
            return [value]
        return value


class _StateDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_ref: str = Field(validation_alias=AliasChoices("taskRef", "task_ref"))
    on_success: str | None = Field(
        default=None, validation_alias=AliasChoices("onSuccess", "on_success")
    )
    catch_rules: list[_CatchRuleDoc] = Field(
        default_factory=list, validation_alias=AliasChoices("catchRules", "catch_rules")
    )


class _DefinitionDoc(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start_state: str = Field(validation_alias=AliasChoices("startState", "start_state"))
    comment: str | None = None
    states: dict[str, _StateDoc]


class _SlCatchDoc(BaseModel):
    model_config = ConfigDict(extra="ignore")

    error_equals: list[str] = Field(alias="ErrorEquals", min_length=1)
    next: str = Field(alias="Next")


class _SlStateDoc(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = Field(alias="Type")
    resource: str | None = Field(default=None, alias="Resource")
    next: str | None = Field(default=None, alias="Next")
    end: bool = Field(default=False, alias="End")
    catch: list[_SlCatchDoc] = Field(default_factory=list, alias="Catch")


class _SlDefinitionDoc(BaseModel):
    model_config = ConfigDict(extra="ignore")

    start_at: str = Field(alias="StartAt")
    comment: str | None = Field(default=None, alias="Comment")
    states: dict[str, _SlStateDoc] = Field(alias="States")


def _is_states_language(obj: dict[str, Any]) -> bool:
    return "StartAt" in obj or "States" in obj


def _from_native(obj: dict[str, Any]) -> WorkflowDefinition:
    doc = _DefinitionDoc.model_validate(obj)
    states = [
        StateSpec(
            name=name,
            task_ref=state.task_ref,
            on_success=state.on_success,
            catch_rules=tuple(
                CatchRule(error_equals=tuple(rule.error_match), target=rule.target)
                for rule in state.catch_rules
            ),
        )
        for name, state in doc.states.items()
    ]
    return WorkflowDefinition.from_states(
        start_state=doc.start_state, states=states, comment=doc.comment
    )


def _from_states_language(obj: dict[str, Any]) -> WorkflowDefinition:
    doc = _SlDefinitionDoc.model_validate(obj)
    states: list[StateSpec] = []
    for name, state in doc.states.items():
        # Parallel/Choice/Wait/Map have no counterpart in a linear task pipeline.
        if state.type != "Task":
            raise DefinitionError(f"State {name!r} has unsupported type {state.type!r}")
        if not state.resource:
            raise DefinitionError(f"Task state {name!r} is missing 'Resource'")
        if state.end and state.next is not None:
            raise DefinitionError(f"State {name!r} declares both 'End' and 'Next'")
        if not state.end and state.next is None:
            raise DefinitionError(f"State {name!r} declares neither 'End' nor 'Next'")
        states.append(
            StateSpec(
                name=name,
                task_ref=state.resource,
                on_success=state.next,
                catch_rules=tuple(
                    CatchRule(error_equals=tuple(c.error_equals), target=c.next)
                    for c in state.catch
                ),
            )
        )
    return WorkflowDefinition.from_states(
        start_state=doc.start_at, states=states, comment=doc.comment
    )


def definition_from_dict(obj: object) -> WorkflowDefinition:
    """Build a validated definition from a parsed JSON document.

    Raises:
        DefinitionError: if the document is malformed or the graph is invalid.
    """

    if not isinstance(obj, dict):
        raise DefinitionError("Workflow definition document must be a JSON object")
    try:
        if _is_states_language(obj):
            return _from_states_language(obj)
        return _from_native(obj)
    except ValidationError as e:
        raise DefinitionError(f"Malformed workflow definition: {e}") from e


def load_definition(path: Path) -> WorkflowDefinition:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise DefinitionError(f"Workflow definition not found: {path}") from e
    except json.JSONDecodeError as e:
        raise DefinitionError(f"Workflow definition is not valid JSON: {path}: {e}") from e

    definition = definition_from_dict(raw)
    for warning in definition.validate().warnings:
        logger.warning(warning.message, extra={"path": str(path), "state": warning.state})
    logger.info(
        "Workflow definition loaded",
        extra={"path": str(path), "states": len(definition.states)},
    )
    return definition


def definition_to_dict(definition: WorkflowDefinition) -> dict[str, object]:
    """Serialise a definition into the native document shape."""

    states: dict[str, object] = {}
    for name, spec in definition.states.items():
        state: dict[str, object] = {"taskRef": spec.task_ref}
        if spec.on_success is not None:
            state["onSuccess"] = spec.on_success
        state["catchRules"] = [
            {"errorMatch": list(rule.error_equals), "target": rule.target}
            for rule in spec.catch_rules
        ]
        states[name] = state

    out: dict[str, object] = {"startState": definition.start_state}
    if definition.comment is not None:
        out["comment"] = definition.comment
    out["states"] = states
    return out
