"""
Lifecycle States

Each lifecycle (response generation, evaluation round, single rubric item)
is a tagged union of frozen dataclasses. A variant carries only the fields
that are valid in that state, and the functions below are the only legal
transitions between them.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from canvas_eval_core.domain.constants import EvalsStatus, EvalStatus, ResponseStatus
from canvas_eval_core.domain.value_objects import Judgment


class InvalidTransition(Exception):
    """Raised when a lifecycle transition is not allowed from the current state"""
    pass


# ---------------------------------------------------------------------------
# Response generation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResponseIdle:
    status = ResponseStatus.IDLE


@dataclass(frozen=True)
class ResponseGenerating:
    """Generation in flight. A retry error means an attempt failed and is being retried."""
    retry_error: str | None = None
    retry_error_at: datetime | None = None

    status = ResponseStatus.GENERATING


@dataclass(frozen=True)
class ResponseComplete:
    completed_at: datetime

    status = ResponseStatus.COMPLETE


@dataclass(frozen=True)
class ResponseFailed:
    error: str
    completed_at: datetime

    status = ResponseStatus.ERROR


ResponseState = Union[ResponseIdle, ResponseGenerating, ResponseComplete, ResponseFailed]


def begin_generation(state: ResponseState) -> ResponseGenerating:
    # A retried attempt keeps the last error visible
    if isinstance(state, ResponseGenerating):
        return state
    return ResponseGenerating()


def record_retry_error(state: ResponseState, error: str, at: datetime) -> ResponseGenerating:
    if not isinstance(state, ResponseGenerating):
        raise InvalidTransition(f"Cannot record a retry error while response is {state.status.value}")
    return ResponseGenerating(retry_error=error, retry_error_at=at)


def complete_generation(state: ResponseState, at: datetime) -> ResponseComplete:
    if not isinstance(state, ResponseGenerating):
        raise InvalidTransition(f"Cannot complete a response that is {state.status.value}")
    return ResponseComplete(completed_at=at)


def fail_generation(state: ResponseState, error: str, at: datetime) -> ResponseFailed:
    if isinstance(state, ResponseComplete):
        raise InvalidTransition("Cannot fail a response that already completed")
    return ResponseFailed(error=error, completed_at=at)


# ---------------------------------------------------------------------------
# Evaluation round
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EvalsIdle:
    status = EvalsStatus.IDLE


@dataclass(frozen=True)
class EvalsRunning:
    started_at: datetime

    status = EvalsStatus.RUNNING


@dataclass(frozen=True)
class EvalsComplete:
    """Settled round. Score and verdict are None when no item produced a usable score."""
    completed_at: datetime
    aggregate_score: float | None = None
    is_successful: bool | None = None

    status = EvalsStatus.COMPLETE


@dataclass(frozen=True)
class EvalsFailed:
    error: str
    completed_at: datetime

    status = EvalsStatus.ERROR


EvalsState = Union[EvalsIdle, EvalsRunning, EvalsComplete, EvalsFailed]


def begin_evals(state: EvalsState, at: datetime) -> EvalsRunning:
    if isinstance(state, EvalsRunning):
        return state
    return EvalsRunning(started_at=at)


def complete_evals(
    state: EvalsState,
    at: datetime,
    aggregate_score: float | None,
    is_successful: bool | None,
) -> EvalsComplete:
    if not isinstance(state, EvalsRunning):
        raise InvalidTransition(f"Cannot complete an evaluation round that is {state.status.value}")
    return EvalsComplete(completed_at=at, aggregate_score=aggregate_score, is_successful=is_successful)


def fail_evals(state: EvalsState, error: str, at: datetime) -> EvalsFailed:
    if not isinstance(state, EvalsRunning):
        raise InvalidTransition(f"Cannot fail an evaluation round that is {state.status.value}")
    return EvalsFailed(error=error, completed_at=at)


# ---------------------------------------------------------------------------
# Single rubric item
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EvalIdle:
    last: Judgment | None = None

    status = EvalStatus.IDLE


@dataclass(frozen=True)
class EvalRunning:
    """Judgment in flight; `last` is the stale result observers may still show"""
    last: Judgment | None = None

    status = EvalStatus.RUNNING


@dataclass(frozen=True)
class EvalComplete:
    """
    Settled with a usable judgment.

    `recovered_error` is set when the latest judge call failed and the
    previous judgment was kept.
    """
    judgment: Judgment
    completed_at: datetime
    recovered_error: str | None = None

    status = EvalStatus.COMPLETE


@dataclass(frozen=True)
class EvalFailed:
    error: str
    completed_at: datetime

    status = EvalStatus.ERROR


EvalState = Union[EvalIdle, EvalRunning, EvalComplete, EvalFailed]


def last_judgment(state: EvalState) -> Judgment | None:
    """The most recent successful judgment carried by a state, if any"""
    if isinstance(state, EvalComplete):
        return state.judgment
    if isinstance(state, (EvalIdle, EvalRunning)):
        return state.last
    return None


def mark_eval_running(state: EvalState) -> EvalRunning:
    return EvalRunning(last=last_judgment(state))


def settle_eval_success(state: EvalState, judgment: Judgment, at: datetime) -> EvalComplete:
    return EvalComplete(judgment=judgment, completed_at=at)


def settle_eval_failure(state: EvalState, error: str, at: datetime) -> EvalComplete | EvalFailed:
    """Keep the previous judgment if there is one, otherwise fail the item"""
    prior = last_judgment(state)
    if prior is None:
        return EvalFailed(error=error, completed_at=at)
    explanation = prior.explanation or f"Previous result retained after error: {error}"
    return EvalComplete(
        judgment=Judgment(score=prior.score, explanation=explanation),
        completed_at=at,
        recovered_error=error,
    )
