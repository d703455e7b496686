"""
Workflows

Workflow handlers for a generation round. Entry point A (`submit_prompt`)
generates a response and then evaluates it; entry point B (`run_evals`)
re-evaluates the current response. Both settle the round only through the
guarded aggregation that runs with every item settlement.
"""

from __future__ import annotations

import asyncio
import logging

from canvas_eval_core.domain.entities import utcnow
from canvas_eval_core.domain.lifecycle import begin_evals, fail_generation, mark_eval_running
from canvas_eval_core.domain.value_objects import GenerationResult, JudgeOutcome
from canvas_eval_core.infrastructure.storage.base import DocumentStore
from canvas_eval_core.infrastructure.workflow_engine import StepContext
from canvas_eval_core.scoring.aggregator import Aggregator
from canvas_eval_core.scoring.llm_judge import EvalJudge
from canvas_eval_core.use_cases.generation import GenerationExecutor

logger = logging.getLogger(__name__)


class WorkflowOrchestrator:
    """Workflow handlers; each takes a StepContext as its first argument"""

    def __init__(
        self,
        store: DocumentStore,
        generator: GenerationExecutor,
        judge: EvalJudge,
        aggregator: Aggregator,
    ):
        self._store = store
        self._generator = generator
        self._judge = judge
        self._aggregator = aggregator

    async def generate_response(self, ctx: StepContext, target_id: str, skip_evals: bool = False) -> GenerationResult:
        """
        Generate with retries; exhaustion marks the response as failed

        Returns:
            GenerationResult. `cancelled` is re-read from the store after the
            attempt so a cancellation that raced completion is still reported.
        """
        try:
            result = await ctx.run_action(self._generator.generate, target_id, skip_evals=skip_evals)
        except Exception as e:
            message = str(e) or type(e).__name__
            await ctx.run_mutation(self._fail_generation, target_id, message)
            return GenerationResult(success=False, error=message)

        if not result.success:
            return result
        cancelled = await ctx.run_query(self._is_cancelled, target_id)
        return GenerationResult(success=True, cancelled=result.cancelled or cancelled)

    async def submit_prompt(self, ctx: StepContext, target_id: str, skip_evals: bool = False) -> GenerationResult:
        """Entry point A: generate, then evaluate unless skipped or cancelled"""
        result = await ctx.run_workflow(self.generate_response, target_id=target_id, skip_evals=skip_evals)
        if not result.success:
            logger.info("[%s] Generation did not succeed: %s", ctx.handle.id, result.error)
            return result
        if result.cancelled or skip_evals:
            return result

        response = await ctx.run_query(self._load_response, target_id)
        if not response:
            logger.info("[%s] Target %s produced no response, nothing to evaluate", ctx.handle.id, target_id)
            return result
        await self.evaluate(ctx, target_id, response)
        return result

    async def run_evals(self, ctx: StepContext, target_id: str) -> list[JudgeOutcome] | None:
        """Entry point B: evaluate the current response"""
        response = await ctx.run_query(self._load_response, target_id)
        if not response:
            logger.info("[%s] Target %s has no response to evaluate", ctx.handle.id, target_id)
            return None
        return await self.evaluate(ctx, target_id, response)

    async def evaluate(self, ctx: StepContext, target_id: str, response: str) -> list[JudgeOutcome]:
        """
        Start a round and fan out one judge step per criterion-bearing item

        The round completes when the last item settles. A judge step that
        raises after its retries is settled as a failure, which triggers
        the same guarded aggregation.
        """
        eval_ids = await ctx.run_mutation(self._begin_round, target_id)
        if not eval_ids:
            await ctx.run_mutation(self._aggregator.settle, target_id)
            return []

        results = await asyncio.gather(
            *(ctx.run_action(self._judge.run, eval_id, response) for eval_id in eval_ids),
            return_exceptions=True,
        )

        outcomes: list[JudgeOutcome] = []
        for eval_id, result in zip(eval_ids, results):
            if isinstance(result, Exception):
                message = str(result) or type(result).__name__
                result = await ctx.run_mutation(self._judge.settle_failure, eval_id, message)
            elif isinstance(result, BaseException):
                raise result
            elif not result.success:
                logger.warning("[%s] Eval %s failed: %s", ctx.handle.id, eval_id, result.error)
            outcomes.append(result)
        return outcomes

    # --- steps ---------------------------------------------------------------

    async def _begin_round(self, target_id: str) -> list[str]:
        async with self._store.transaction() as tx:
            target = tx.get_target(target_id)
            target.evals_state = begin_evals(target.evals_state, utcnow())
            tx.put_target(target)

            eval_ids = []
            for item in tx.list_evals(target_id):
                if item.has_criterion:
                    item.state = mark_eval_running(item.state)
                    tx.put_eval(item)
                    eval_ids.append(item.id)
            return eval_ids

    async def _fail_generation(self, target_id: str, message: str) -> None:
        async with self._store.transaction() as tx:
            target = tx.get_target(target_id)
            target.response_state = fail_generation(target.response_state, message, utcnow())
            tx.put_target(target)
        logger.error("Generation for %s failed after retries: %s", target_id, message)

    async def _is_cancelled(self, target_id: str) -> bool:
        target = await self._store.read_target(target_id)
        return target.generation_cancelled_at is not None

    async def _load_response(self, target_id: str) -> str | None:
        target = await self._store.read_target(target_id)
        return target.response
