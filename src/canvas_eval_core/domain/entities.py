"""
Domain Entities

Defines the persisted records: the generation target (a canvas version),
its rubric items and the streamed response chunks.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from canvas_eval_core.domain.constants import (
    DEFAULT_EVAL_WEIGHT,
    EvalKind,
    EvalsStatus,
    EvalStatus,
    ResponseStatus,
)
from canvas_eval_core.domain.lifecycle import (
    EvalComplete,
    EvalFailed,
    EvalIdle,
    EvalsComplete,
    EvalsFailed,
    EvalsIdle,
    EvalsState,
    EvalState,
    ResponseComplete,
    ResponseFailed,
    ResponseGenerating,
    ResponseIdle,
    ResponseState,
    last_judgment,
)


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class GenerationTarget:
    """One prompt/response pair under orchestration"""
    id: str = field(default_factory=new_id)
    prompt: str | None = None
    model: str | None = None
    response: str | None = None
    response_state: ResponseState = field(default_factory=ResponseIdle)
    response_modified_at: datetime | None = None
    generation_cancelled_at: datetime | None = None
    evals_state: EvalsState = field(default_factory=EvalsIdle)
    success_threshold: float | None = None
    active_workflow_id: str | None = None

    def __post_init__(self):
        if self.success_threshold is not None and not 0.0 <= self.success_threshold <= 1.0:
            raise ValueError("success_threshold must be between 0 and 1")

    @property
    def has_prompt(self) -> bool:
        return bool(self.prompt and self.prompt.strip())

    @property
    def response_status(self) -> ResponseStatus:
        return self.response_state.status

    @property
    def response_error(self) -> str | None:
        if isinstance(self.response_state, ResponseGenerating):
            return self.response_state.retry_error
        if isinstance(self.response_state, ResponseFailed):
            return self.response_state.error
        return None

    @property
    def response_error_at(self) -> datetime | None:
        if isinstance(self.response_state, ResponseGenerating):
            return self.response_state.retry_error_at
        if isinstance(self.response_state, ResponseFailed):
            return self.response_state.completed_at
        return None

    @property
    def response_completed_at(self) -> datetime | None:
        if isinstance(self.response_state, (ResponseComplete, ResponseFailed)):
            return self.response_state.completed_at
        return None

    @property
    def evals_status(self) -> EvalsStatus:
        return self.evals_state.status

    @property
    def evals_completed_at(self) -> datetime | None:
        if isinstance(self.evals_state, (EvalsComplete, EvalsFailed)):
            return self.evals_state.completed_at
        return None

    @property
    def aggregate_score(self) -> float | None:
        if isinstance(self.evals_state, EvalsComplete):
            return self.evals_state.aggregate_score
        return None

    @property
    def is_successful(self) -> bool | None:
        if isinstance(self.evals_state, EvalsComplete):
            return self.evals_state.is_successful
        return None


@dataclass
class EvalItem:
    """One weighted rubric requirement bound to a target"""
    target_id: str
    criterion: str | None = None
    kind: EvalKind = EvalKind.PASS_FAIL
    model: str | None = None
    is_required: bool = False
    weight: float = DEFAULT_EVAL_WEIGHT
    threshold: float | None = None  # subjective only
    state: EvalState = field(default_factory=EvalIdle)
    id: str = field(default_factory=new_id)

    def __post_init__(self):
        """Post-initialization validation"""
        self.kind = EvalKind(self.kind)
        if self.weight <= 0:
            raise ValueError(f"weight must be positive: {self.weight}")
        if self.threshold is not None and not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be between 0 and 1: {self.threshold}")

    @property
    def has_criterion(self) -> bool:
        return bool(self.criterion and self.criterion.strip())

    @property
    def status(self) -> EvalStatus:
        return self.state.status

    @property
    def score(self) -> float | None:
        judgment = last_judgment(self.state)
        return judgment.score if judgment else None

    @property
    def explanation(self) -> str | None:
        judgment = last_judgment(self.state)
        return judgment.explanation if judgment else None

    @property
    def error(self) -> str | None:
        if isinstance(self.state, EvalFailed):
            return self.state.error
        if isinstance(self.state, EvalComplete):
            return self.state.recovered_error
        return None

    @property
    def completed_at(self) -> datetime | None:
        if isinstance(self.state, (EvalComplete, EvalFailed)):
            return self.state.completed_at
        return None


@dataclass
class ResponseChunk:
    """Ordered fragment of a streamed response"""
    target_id: str
    content: str
    index: int
