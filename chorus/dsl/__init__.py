"""
DSL Module - multi-phase conversation definitions

- DSLConversation / DSLPhase: validated schema (pydantic)
- load_dsl / load_dsl_file / dump_dsl / example_dsl: YAML source
- DSLPhaseEngine: runs the phases of one turn
"""

from chorus.dsl.engine import DSLPhaseEngine
from chorus.dsl.loader import dump_dsl, example_dsl, load_dsl, load_dsl_file, validate_dsl
from chorus.dsl.models import (
    ContextMode,
    DSLConversation,
    DSLPhase,
    ExecutionContext,
    ModelSelector,
)

__all__ = [
    "ContextMode",
    "DSLConversation",
    "DSLPhase",
    "DSLPhaseEngine",
    "ExecutionContext",
    "ModelSelector",
    "dump_dsl",
    "example_dsl",
    "load_dsl",
    "load_dsl_file",
    "validate_dsl",
]
