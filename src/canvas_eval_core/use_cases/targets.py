"""
Target Service

Entry points used by the CLI and API layers: scaffold targets and rubric
items, start the submit-prompt and run-evals workflows, request
cancellation, and read snapshots for observers.
"""

from __future__ import annotations

import functools
import logging
from typing import Callable

from canvas_eval_core.domain.constants import EvalKind, ResponseStatus
from canvas_eval_core.domain.entities import EvalItem, GenerationTarget, new_id, utcnow
from canvas_eval_core.domain.lifecycle import EvalsRunning, fail_evals, fail_generation
from canvas_eval_core.infrastructure.model_clients import ModelClient, create_client
from canvas_eval_core.infrastructure.storage.base import DocumentStore, TargetNotFound
from canvas_eval_core.infrastructure.workflow_engine import (
    WorkflowEngine,
    WorkflowHandle,
    WorkflowResult,
    WorkflowStatus,
)
from canvas_eval_core.scoring.aggregator import Aggregator
from canvas_eval_core.scoring.llm_judge import EvalJudge
from canvas_eval_core.use_cases.generation import GenerationExecutor
from canvas_eval_core.workflow_config import WorkflowConfig
from canvas_eval_core.workflows import WorkflowOrchestrator

logger = logging.getLogger(__name__)

WORKFLOW_CANCELED_ERROR = "Workflow canceled"


class TargetService:
    """Starts and tracks workflows for generation targets"""

    def __init__(
        self,
        store: DocumentStore,
        engine: WorkflowEngine,
        orchestrator: WorkflowOrchestrator,
        config: WorkflowConfig | None = None,
    ):
        self._store = store
        self._engine = engine
        self._orchestrator = orchestrator
        self._config = config or WorkflowConfig()
        self._handles: dict[str, WorkflowHandle] = {}

    @classmethod
    def build(
        cls,
        store: DocumentStore,
        config: WorkflowConfig | None = None,
        client_factory: Callable[[str], ModelClient] | None = None,
    ) -> "TargetService":
        """
        Wire the executor, judge, aggregator and engine around a store

        Args:
            store: Document store
            config: WorkflowConfig (defaults when not provided)
            client_factory: Builds a ModelClient for a model identifier
                (defaults to `create_client` with the given config)
        """
        config = config or WorkflowConfig()
        if client_factory is None:
            def client_factory(model_name: str) -> ModelClient:
                return create_client(model_name, config)

        aggregator = Aggregator(store, config.evals)
        orchestrator = WorkflowOrchestrator(
            store,
            GenerationExecutor(store, client_factory, config),
            EvalJudge(store, client_factory, aggregator, config),
            aggregator,
        )
        return cls(store, WorkflowEngine.from_config(config.retry), orchestrator, config)

    # --- scaffolding ---------------------------------------------------------

    async def create_target(
        self,
        prompt: str | None = None,
        model: str | None = None,
        success_threshold: float | None = None,
    ) -> GenerationTarget:
        target = GenerationTarget(prompt=prompt, model=model, success_threshold=success_threshold)
        async with self._store.transaction() as tx:
            tx.put_target(target)
        return target

    async def add_eval(
        self,
        target_id: str,
        criterion: str | None,
        kind: EvalKind | str = EvalKind.PASS_FAIL,
        model: str | None = None,
        is_required: bool = False,
        weight: float | None = None,
        threshold: float | None = None,
    ) -> EvalItem:
        item = EvalItem(
            target_id=target_id,
            criterion=criterion,
            kind=kind,
            model=model,
            is_required=is_required,
            weight=weight if weight is not None else self._config.evals.weight,
            threshold=threshold,
        )
        async with self._store.transaction() as tx:
            tx.put_eval(item)
        return item

    # --- workflows -----------------------------------------------------------

    async def submit_prompt(self, target_id: str, prompt: str, skip_evals: bool = False) -> WorkflowHandle:
        """
        Save the prompt and start entry point A

        A workflow still active for the target is cancelled first.

        Returns:
            WorkflowHandle of the new run
        """
        workflow_id = new_id()
        async with self._store.transaction() as tx:
            target = tx.get_target(target_id)
            previous = target.active_workflow_id
            target.prompt = prompt
            target.generation_cancelled_at = None
            target.active_workflow_id = workflow_id
            tx.put_target(target)

        await self._cancel_previous(previous)
        return self._start(
            "submit_prompt",
            self._orchestrator.submit_prompt,
            workflow_id,
            target_id,
            skip_evals=skip_evals,
        )

    async def run_evals(self, target_id: str) -> WorkflowHandle:
        """Start entry point B for the target's current response"""
        workflow_id = new_id()
        async with self._store.transaction() as tx:
            target = tx.get_target(target_id)
            previous = target.active_workflow_id
            target.active_workflow_id = workflow_id
            tx.put_target(target)

        await self._cancel_previous(previous)
        return self._start("run_evals", self._orchestrator.run_evals, workflow_id, target_id)

    async def cancel_generation(self, target_id: str) -> bool:
        """
        Request cancellation of an in-flight generation

        Returns:
            True if the marker was written (the response was generating)
        """
        async with self._store.transaction() as tx:
            target = tx.get_target(target_id)
            if target.response_status != ResponseStatus.GENERATING:
                return False
            target.generation_cancelled_at = utcnow()
            tx.put_target(target)
        logger.info("Cancellation requested for target %s", target_id)
        return True

    async def wait(self, handle: WorkflowHandle) -> WorkflowResult:
        return await self._engine.wait(handle)

    def _start(self, name: str, handler, workflow_id: str, target_id: str, **args) -> WorkflowHandle:
        handle = self._engine.start(
            name,
            handler,
            workflow_id=workflow_id,
            on_complete=functools.partial(self._on_complete, target_id),
            target_id=target_id,
            **args,
        )
        self._handles[handle.id] = handle
        return handle

    async def _cancel_previous(self, workflow_id: str | None) -> None:
        if workflow_id is None:
            return
        handle = self._handles.get(workflow_id)
        if handle is None:
            logger.debug("Active workflow %s is not tracked by this service", workflow_id)
            return
        if self._engine.status(handle) == WorkflowStatus.RUNNING:
            logger.info("Cancelling superseded workflow %s", workflow_id)
            await self._engine.cancel(handle)

    async def _on_complete(self, target_id: str, handle: WorkflowHandle, result: WorkflowResult) -> None:
        self._handles.pop(handle.id, None)
        if result.status == WorkflowStatus.FAILED:
            logger.error("Workflow %s (%s) failed: %s", handle.name, handle.id, result.error)
        elif result.status == WorkflowStatus.CANCELED:
            logger.warning("Workflow %s (%s) was canceled", handle.name, handle.id)
        else:
            logger.info("Workflow %s (%s) finished", handle.name, handle.id)

        error = result.error or WORKFLOW_CANCELED_ERROR
        try:
            async with self._store.transaction() as tx:
                target = tx.get_target(target_id)
                if target.active_workflow_id == handle.id:
                    target.active_workflow_id = None
                if result.status == WorkflowStatus.CANCELED and target.response_status == ResponseStatus.GENERATING:
                    target.response_state = fail_generation(target.response_state, WORKFLOW_CANCELED_ERROR, utcnow())
                if result.status != WorkflowStatus.SUCCESS and isinstance(target.evals_state, EvalsRunning):
                    target.evals_state = fail_evals(target.evals_state, error, utcnow())
                tx.put_target(target)
        except TargetNotFound:
            logger.warning("Target %s was deleted before workflow %s finished", target_id, handle.id)

    # --- snapshots -----------------------------------------------------------

    async def get_target(self, target_id: str) -> GenerationTarget:
        return await self._store.read_target(target_id)

    async def list_evals(self, target_id: str) -> list[EvalItem]:
        return await self._store.read_evals(target_id)
