"""
Domain Layer

Defines constants, entities, lifecycle states and value objects that form the
core of the orchestration logic.
Has no dependencies on external libraries.
"""

from canvas_eval_core.domain.constants import (
    DEFAULT_SUBJECTIVE_THRESHOLD,
    DEFAULT_SUCCESS_THRESHOLD,
    EvalKind,
    EvalsStatus,
    EvalStatus,
    ResponseStatus,
)
from canvas_eval_core.domain.entities import (
    EvalItem,
    GenerationTarget,
    ResponseChunk,
)
from canvas_eval_core.domain.lifecycle import InvalidTransition
from canvas_eval_core.domain.value_objects import (
    AggregateOutcome,
    GenerationResult,
    JudgeOutcome,
    Judgment,
    ModelResponse,
)

__all__ = [
    # constants
    "DEFAULT_SUBJECTIVE_THRESHOLD",
    "DEFAULT_SUCCESS_THRESHOLD",
    "EvalKind",
    "EvalsStatus",
    "EvalStatus",
    "ResponseStatus",
    # entities
    "EvalItem",
    "GenerationTarget",
    "ResponseChunk",
    # lifecycle
    "InvalidTransition",
    # value objects
    "AggregateOutcome",
    "GenerationResult",
    "JudgeOutcome",
    "Judgment",
    "ModelResponse",
]
