"""
Aggregator

Computes the aggregate score and success verdict of an evaluation round.
The transition from running to complete is guarded on the round status, so
any number of concurrent settlement attempts complete a round exactly once.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from canvas_eval_core.domain.constants import (
    DEFAULT_SUBJECTIVE_THRESHOLD,
    DEFAULT_SUCCESS_THRESHOLD,
    EvalKind,
    EvalStatus,
)
from canvas_eval_core.domain.entities import EvalItem, utcnow
from canvas_eval_core.domain.lifecycle import EvalsRunning, complete_evals
from canvas_eval_core.domain.value_objects import AggregateOutcome
from canvas_eval_core.infrastructure.storage.base import DocumentStore, StoreTransaction
from canvas_eval_core.workflow_config import EvalDefaultsConfig

logger = logging.getLogger(__name__)

_SETTLED = (EvalStatus.COMPLETE, EvalStatus.ERROR)


def _passes_individually(item: EvalItem, subjective_threshold: float) -> bool:
    if item.status != EvalStatus.COMPLETE or item.score is None:
        return False
    if item.kind == EvalKind.PASS_FAIL:
        return item.score == 1.0
    threshold = item.threshold if item.threshold is not None else subjective_threshold
    return item.score >= threshold


def compute_aggregate(
    items: Iterable[EvalItem],
    success_threshold: float = DEFAULT_SUCCESS_THRESHOLD,
    subjective_threshold: float = DEFAULT_SUBJECTIVE_THRESHOLD,
) -> AggregateOutcome:
    """
    Weighted aggregate over the criterion-bearing items of a round

    Args:
        items: Eval items of the target (items without a criterion are ignored)
        success_threshold: Minimum aggregate score for success
        subjective_threshold: Pass mark for required subjective items without their own threshold

    Returns:
        AggregateOutcome. Score and verdict are None when no item is complete with a score.
    """
    items = [item for item in items if item.has_criterion]
    scored = [item for item in items if item.status == EvalStatus.COMPLETE and item.score is not None]
    if not scored:
        return AggregateOutcome(aggregate_score=None, is_successful=None)

    total_weight = sum(item.weight for item in scored)
    aggregate_score = sum(item.weight * item.score for item in scored) / total_weight

    required_gate = all(
        _passes_individually(item, subjective_threshold)
        for item in items
        if item.is_required
    )
    return AggregateOutcome(
        aggregate_score=aggregate_score,
        is_successful=aggregate_score >= success_threshold and required_gate,
    )


class Aggregator:
    """Settles evaluation rounds through the running-status guard"""

    def __init__(self, store: DocumentStore, defaults: EvalDefaultsConfig | None = None):
        self._store = store
        self._defaults = defaults or EvalDefaultsConfig()

    def settle_in(self, tx: StoreTransaction, target_id: str) -> AggregateOutcome | None:
        """
        Complete the round if it is running and every criterion-bearing item has settled

        Runs inside the caller's transaction so that the item settlement and
        the round transition are one atomic write.

        Returns:
            The outcome when this call completed the round, otherwise None
        """
        target = tx.get_target(target_id)
        if not isinstance(target.evals_state, EvalsRunning):
            return None

        items = [item for item in tx.list_evals(target_id) if item.has_criterion]
        pending = [item.id for item in items if item.status not in _SETTLED]
        if pending:
            logger.debug("Round for %s still waiting on %d item(s)", target_id, len(pending))
            return None

        threshold = target.success_threshold
        if threshold is None:
            threshold = self._defaults.success_threshold
        outcome = compute_aggregate(items, threshold, self._defaults.subjective_threshold)

        target.evals_state = complete_evals(
            target.evals_state, utcnow(), outcome.aggregate_score, outcome.is_successful
        )
        target.active_workflow_id = None
        tx.put_target(target)

        if outcome.aggregate_score is None:
            logger.info("Round for %s complete without a usable score", target_id)
        else:
            logger.info("Round for %s complete: score=%.3f successful=%s",
                        target_id, outcome.aggregate_score, outcome.is_successful)
        return outcome

    async def settle(self, target_id: str) -> AggregateOutcome | None:
        """Run `settle_in` in its own transaction"""
        async with self._store.transaction() as tx:
            return self.settle_in(tx, target_id)
