"""DSL source: YAML text <-> validated ``DSLConversation``.

Errors are collected from pydantic and reported one per line as
``Phase N field: message`` (or ``field: message`` for top-level fields).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from chorus.core.exceptions import DSLValidationError
from chorus.dsl.models import ContextMode, DSLConversation, DSLPhase


_VALUE_ERROR_PREFIX = "Value error, "


def _error_entry(error: dict[str, Any]) -> dict[str, Any]:
    loc = list(error.get("loc", ()))
    message = str(error.get("msg", "Invalid value"))
    if message.startswith(_VALUE_ERROR_PREFIX):
        message = message[len(_VALUE_ERROR_PREFIX):]

    entry: dict[str, Any] = {"message": message}
    if len(loc) >= 2 and loc[0] == "phases" and isinstance(loc[1], int):
        entry["phase"] = loc[1]
        entry["field"] = ".".join(str(part) for part in loc[2:]) or "phase"
    else:
        entry["field"] = ".".join(str(part) for part in loc) or "document"
    return entry


def format_error(entry: dict[str, Any]) -> str:
    if "phase" in entry:
        return f"Phase {entry['phase'] + 1} {entry['field']}: {entry['message']}"
    return f"{entry['field']}: {entry['message']}"


def validate_dsl(data: Any) -> DSLConversation:
    """Validate already-parsed data.

    Raises:
        DSLValidationError: Listing every problem found.
    """
    if not isinstance(data, dict):
        entry = {"field": "document", "message": "DSL document must be a mapping"}
        raise DSLValidationError(f"Validation errors:\n{format_error(entry)}", errors=[entry])
    try:
        return DSLConversation.model_validate(data)
    except ValidationError as e:
        entries = [_error_entry(error) for error in e.errors()]
        lines = "\n".join(format_error(entry) for entry in entries)
        raise DSLValidationError(f"Validation errors:\n{lines}", errors=entries) from e


def load_dsl(text: str) -> DSLConversation:
    """Parse and validate DSL YAML text."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DSLValidationError(
            f"YAML parsing error: {e}",
            errors=[{"field": "yaml", "message": str(e)}],
        ) from e
    return validate_dsl(data)


def load_dsl_file(path: str | Path) -> DSLConversation:
    return load_dsl(Path(path).read_text(encoding="utf-8"))


def dump_dsl(dsl: DSLConversation) -> str:
    """Serialize to YAML, keeping the authoring field order."""
    return yaml.safe_dump(dsl.to_dict(), sort_keys=False, allow_unicode=True)


def example_dsl() -> DSLConversation:
    """Three-phase collaborative refinement example."""
    return DSLConversation(
        name="Collaborative Refinement",
        description="Multi-stage collaboration with refinement and summary",
        version="1.0",
        phases=[
            DSLPhase(
                name="Initial Response",
                models="all",
                context=ContextMode.USER_ONLY,
            ),
            DSLPhase(
                name="Refinement",
                models="all",
                context=ContextMode.ALL_PREVIOUS,
                prompt=(
                    "Based on the other responses, refine and improve your answer. "
                    "Consider different perspectives and build upon the collective knowledge."
                ),
            ),
            DSLPhase(
                name="Final Summary",
                models="first",
                context=ContextMode.ALL_PREVIOUS,
                prompt=(
                    "Provide a comprehensive summary that synthesizes all responses "
                    "and refinements into a final, authoritative answer."
                ),
            ),
        ],
    )
