"""
Domain Value Objects

Defines immutable data structures representing judgments, model responses,
and the results reported by generation, judging and aggregation.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Judgment:
    """One judge verdict (score + explanation)"""

    score: float
    explanation: str | None = None


@dataclass
class ModelResponse:
    """Model response"""
    output: str
    latency_ms: int
    model_name: str
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one generation attempt or generation workflow"""
    success: bool
    cancelled: bool = False
    error: str | None = None


@dataclass(frozen=True)
class JudgeOutcome:
    """Outcome of one judge run as reported to the workflow"""
    eval_id: str
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class AggregateOutcome:
    """Aggregate score and verdict of a settled round (both None if no usable score)"""
    aggregate_score: float | None
    is_successful: bool | None
