"""DSL conversation schema.

A DSL conversation is an ordered list of phases. Each phase names which
candidate models respond (``models`` selector), what they see (``context``)
and optionally overrides the prompt, roles and temperature.

Validation mirrors the authoring rules: name and description are required,
at least one phase, selector and context values from fixed vocabularies,
temperature in [0, 2].
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Vocabularies
# =============================================================================


class ModelSelector(str, Enum):
    """Keyword selectors; index lists such as ``"1,3"`` are also accepted."""

    ALL = "all"
    FIRST = "first"
    LAST = "last"
    RANDOM = "random"


class ContextMode(str, Enum):
    """What a phase's respondents see."""

    USER_ONLY = "user_only"
    ALL_PREVIOUS = "all_previous"
    PHASE_PREVIOUS = "phase_previous"


_INDEX_LIST = re.compile(r"^\d+(,\d+)*$")

_MODELS_MESSAGE = (
    'Models must be "all", "first", "last", "random", '
    'or comma-separated indices (e.g., "1,3,5")'
)
_CONTEXT_MESSAGE = 'Context must be "user_only", "all_previous", or "phase_previous"'
_TEMPERATURE_MESSAGE = "Temperature must be a number between 0 and 2"


def _required(value: Any, message: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError(message)
    return str(value)


def _role_map(value: Any) -> Any:
    # YAML turns `0: Critic` into an int key; roles are keyed by index string.
    if isinstance(value, dict):
        return {str(key): str(role) for key, role in value.items()}
    return value


# =============================================================================
# Schema
# =============================================================================


class DSLPhase(BaseModel):
    """One phase of a DSL conversation.

    Attributes:
        name: Phase name; also the key for its recorded message ids.
        models: Selector over the turn's candidate list.
        context: Visibility rule for respondents.
        prompt: Instruction appended as a trailing user message.
        roles: 0-based candidate index (as string) -> role name.
        temperature: Overrides the turn temperature.
        wait_for_completion: Barrier before the next phase.
    """

    name: str = Field(default="", validate_default=True)
    models: str = Field(default="", validate_default=True)
    context: ContextMode = Field(default=None, validate_default=True)
    prompt: str | None = None
    roles: dict[str, str] | None = None
    temperature: float | None = None
    wait_for_completion: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> str:
        return _required(v, "Phase name is required")

    @field_validator("models", mode="before")
    @classmethod
    def validate_models(cls, v: Any) -> str:
        spec = _required(v, "Models specification is required").strip()
        if spec not in {s.value for s in ModelSelector} and not _INDEX_LIST.match(spec):
            raise ValueError(_MODELS_MESSAGE)
        return spec

    @field_validator("context", mode="before")
    @classmethod
    def validate_context(cls, v: Any) -> str:
        value = _required(v, "Context specification is required").strip()
        if value not in {c.value for c in ContextMode}:
            raise ValueError(_CONTEXT_MESSAGE)
        return value

    @field_validator("roles", mode="before")
    @classmethod
    def validate_roles(cls, v: Any) -> Any:
        return _role_map(v)

    @field_validator("temperature", mode="before")
    @classmethod
    def validate_temperature(cls, v: Any) -> Any:
        if v is None:
            return v
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not 0 <= v <= 2:
            raise ValueError(_TEMPERATURE_MESSAGE)
        return v

    @field_validator("wait_for_completion", mode="before")
    @classmethod
    def default_wait(cls, v: Any) -> Any:
        # Only an explicit false disables the barrier.
        return v is not False


class DSLConversation(BaseModel):
    """A validated multi-phase conversation definition."""

    name: str = Field(default="", validate_default=True)
    description: str = Field(default="", validate_default=True)
    version: str = "1.0"
    author: str | None = None
    phases: list[DSLPhase] = Field(default_factory=list, validate_default=True)
    global_prompt: str | None = None
    global_roles: dict[str, str] | None = None

    @field_validator("name", mode="before")
    @classmethod
    def validate_name(cls, v: Any) -> str:
        return _required(v, "Name is required")

    @field_validator("description", mode="before")
    @classmethod
    def validate_description(cls, v: Any) -> str:
        return _required(v, "Description is required")

    @field_validator("version", mode="before")
    @classmethod
    def default_version(cls, v: Any) -> str:
        return str(v) if v not in (None, "") else "1.0"

    @field_validator("phases", mode="before")
    @classmethod
    def validate_phases(cls, v: Any) -> Any:
        if not v:
            raise ValueError("At least one phase is required")
        return v

    @field_validator("global_roles", mode="before")
    @classmethod
    def validate_global_roles(cls, v: Any) -> Any:
        return _role_map(v)

    def to_dict(self) -> dict[str, Any]:
        """Serializable form without unset optional fields."""
        return self.model_dump(mode="json", exclude_none=True)


# =============================================================================
# Per-turn execution state
# =============================================================================


@dataclass
class ExecutionContext:
    """Progress of one DSL turn.

    Attributes:
        current_phase: 0-based index of the running phase.
        completed_phases: Names of phases whose respondents were launched.
        phase_results: Phase name -> message ids produced in that phase.
    """

    current_phase: int = 0
    completed_phases: list[str] = field(default_factory=list)
    phase_results: dict[str, list[str]] = field(default_factory=dict)

    def previous_phase_ids(self, phases: list[DSLPhase]) -> list[str]:
        """Ids recorded for the phase before the current one."""
        if self.current_phase <= 0:
            return []
        previous = phases[self.current_phase - 1]
        return list(self.phase_results.get(previous.name, []))

    def all_ids(self) -> list[str]:
        return [mid for ids in self.phase_results.values() for mid in ids]
