"""
Aggregator のテスト

加重平均、必須項目ゲート、running ガードによる一度だけの遷移を確認する。
"""

import asyncio
from datetime import datetime, timezone

import pytest

from canvas_eval_core.domain.constants import EvalKind, EvalsStatus
from canvas_eval_core.domain.entities import EvalItem, GenerationTarget
from canvas_eval_core.domain.lifecycle import (
    EvalComplete,
    EvalFailed,
    EvalRunning,
    EvalsComplete,
    EvalsRunning,
)
from canvas_eval_core.domain.value_objects import AggregateOutcome, Judgment
from canvas_eval_core.scoring.aggregator import Aggregator, compute_aggregate

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _complete(score, **kwargs) -> EvalItem:
    return EvalItem(
        target_id="t1",
        criterion=kwargs.pop("criterion", "c"),
        state=EvalComplete(judgment=Judgment(score), completed_at=NOW),
        **kwargs,
    )


def _failed(**kwargs) -> EvalItem:
    return EvalItem(target_id="t1", criterion="c", state=EvalFailed(error="x", completed_at=NOW), **kwargs)


class TestComputeAggregate:
    """compute_aggregate() のテスト"""

    def test_weighted_mean(self):
        items = [_complete(1.0, weight=3.0), _complete(0.0, weight=1.0)]
        outcome = compute_aggregate(items, success_threshold=0.7)
        assert outcome.aggregate_score == pytest.approx(0.75)
        assert outcome.is_successful is True

    def test_required_pass_scenario(self):
        """必須の pass_fail が合格し、任意の subjective が0.6の場合 0.8 で成功"""
        items = [
            _complete(1.0, kind=EvalKind.PASS_FAIL, is_required=True),
            _complete(0.6, kind=EvalKind.SUBJECTIVE, threshold=0.5),
        ]
        outcome = compute_aggregate(items, success_threshold=0.7)
        assert outcome.aggregate_score == pytest.approx(0.8)
        assert outcome.is_successful is True

    def test_required_fail_scenario(self):
        """必須項目が不合格なら閾値に関係なく失敗"""
        items = [
            _complete(0.0, kind=EvalKind.PASS_FAIL, is_required=True),
            _complete(0.6, kind=EvalKind.SUBJECTIVE, threshold=0.5),
        ]
        outcome = compute_aggregate(items, success_threshold=0.0)
        assert outcome.aggregate_score == pytest.approx(0.3)
        assert outcome.is_successful is False

    def test_required_subjective_uses_own_threshold(self):
        items = [_complete(0.6, kind=EvalKind.SUBJECTIVE, is_required=True, threshold=0.65)]
        assert compute_aggregate(items, success_threshold=0.5).is_successful is False

    def test_required_subjective_default_threshold(self):
        items = [_complete(0.55, kind=EvalKind.SUBJECTIVE, is_required=True)]
        assert compute_aggregate(items, success_threshold=0.5).is_successful is True

    def test_required_error_item_fails_gate(self):
        items = [_complete(1.0), _failed(is_required=True)]
        outcome = compute_aggregate(items, success_threshold=0.5)
        assert outcome.aggregate_score == 1.0
        assert outcome.is_successful is False

    def test_error_items_do_not_count(self):
        items = [_complete(0.4), _failed(weight=10.0)]
        assert compute_aggregate(items).aggregate_score == pytest.approx(0.4)

    def test_items_without_criterion_ignored(self):
        items = [_complete(0.9), _complete(0.0, criterion="", weight=5.0)]
        assert compute_aggregate(items).aggregate_score == pytest.approx(0.9)

    def test_undefined_without_usable_scores(self):
        """スコアのある完了項目がなければ集計値・成否とも未定義"""
        assert compute_aggregate([_failed(), _failed()]) == AggregateOutcome(None, None)
        assert compute_aggregate([]) == AggregateOutcome(None, None)


async def _scaffold(store, items, success_threshold=None, running=True):
    target = GenerationTarget(prompt="X", response="Y", success_threshold=success_threshold,
                              active_workflow_id="wf-1")
    if running:
        target.evals_state = EvalsRunning(started_at=NOW)
    async with store.transaction() as tx:
        tx.put_target(target)
        for item in items:
            item.target_id = target.id
            tx.put_eval(item)
    return target


class TestAggregatorSettle:
    """Aggregator.settle() のテスト"""

    @pytest.mark.asyncio
    async def test_completes_running_round(self, store):
        target = await _scaffold(store, [_complete(1.0), _complete(0.6)])

        outcome = await Aggregator(store).settle(target.id)

        assert outcome.aggregate_score == pytest.approx(0.8)
        saved = await store.read_target(target.id)
        assert saved.evals_status == EvalsStatus.COMPLETE
        assert saved.aggregate_score == pytest.approx(0.8)
        assert saved.is_successful is True
        assert saved.active_workflow_id is None

    @pytest.mark.asyncio
    async def test_target_threshold_overrides_default(self, store):
        target = await _scaffold(store, [_complete(0.8)], success_threshold=0.9)
        await Aggregator(store).settle(target.id)
        assert (await store.read_target(target.id)).is_successful is False

    @pytest.mark.asyncio
    async def test_waits_for_pending_items(self, store):
        """running の項目が残っている間は何もしないこと"""
        pending = EvalItem(target_id="t1", criterion="c", state=EvalRunning(last=Judgment(1.0)))
        target = await _scaffold(store, [_complete(1.0), pending])

        assert await Aggregator(store).settle(target.id) is None
        saved = await store.read_target(target.id)
        assert saved.evals_status == EvalsStatus.RUNNING
        assert saved.active_workflow_id == "wf-1"

    @pytest.mark.asyncio
    async def test_guard_skips_rounds_not_running(self, store):
        target = await _scaffold(store, [_complete(1.0)], running=False)
        assert await Aggregator(store).settle(target.id) is None
        assert (await store.read_target(target.id)).evals_status == EvalsStatus.IDLE

    @pytest.mark.asyncio
    async def test_completed_round_is_not_recomputed(self, store):
        target = await _scaffold(store, [_complete(1.0)])
        aggregator = Aggregator(store)

        first = await aggregator.settle(target.id)
        second = await aggregator.settle(target.id)

        assert first is not None
        assert second is None
        saved = await store.read_target(target.id)
        assert isinstance(saved.evals_state, EvalsComplete)

    @pytest.mark.asyncio
    async def test_no_criterion_items_complete_undefined(self, store):
        target = await _scaffold(store, [])
        outcome = await Aggregator(store).settle(target.id)
        assert outcome == AggregateOutcome(None, None)
        saved = await store.read_target(target.id)
        assert saved.evals_status == EvalsStatus.COMPLETE
        assert saved.aggregate_score is None

    @pytest.mark.asyncio
    async def test_concurrent_settles_transition_once(self, store):
        """N 回の並行呼び出しで running -> complete の遷移は一度だけ起こること"""
        target = await _scaffold(store, [_complete(1.0), _complete(0.5)])
        aggregator = Aggregator(store)

        results = await asyncio.gather(*(aggregator.settle(target.id) for _ in range(10)))

        transitions = [r for r in results if r is not None]
        assert len(transitions) == 1
        assert transitions[0].aggregate_score == pytest.approx(0.75)
