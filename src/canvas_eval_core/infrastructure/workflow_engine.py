"""
Workflow Engine

In-process runner for workflow handlers. A handler receives a StepContext
and performs its work as steps: actions (external calls, retried by default),
mutations and queries (not retried by default) and sub-workflows.

This engine does not persist progress across process restarts; a durable
engine with the same StepContext surface can replace it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from canvas_eval_core.domain.entities import new_id
from canvas_eval_core.workflow_config import RetryConfig

logger = logging.getLogger(__name__)


class WorkflowStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: initial_backoff_ms * base ** attempt between attempts"""
    max_attempts: int = 3
    initial_backoff_ms: int = 1000
    base: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            initial_backoff_ms=config.initial_backoff_ms,
            base=config.base,
        )

    def delay_seconds(self, attempt: int) -> float:
        return self.initial_backoff_ms / 1000 * (self.base ** attempt)


@dataclass(frozen=True)
class WorkflowHandle:
    id: str
    name: str


@dataclass(frozen=True)
class WorkflowResult:
    status: WorkflowStatus
    return_value: Any = None
    error: str | None = None


OnComplete = Callable[[WorkflowHandle, WorkflowResult], Awaitable[None]]


class StepContext:
    """Step runner handed to workflow handlers"""

    def __init__(self, handle: WorkflowHandle, retry_policy: RetryPolicy, semaphore: asyncio.Semaphore):
        self.handle = handle
        self._retry_policy = retry_policy
        self._semaphore = semaphore

    def _policy(self, retry: bool | RetryPolicy) -> RetryPolicy | None:
        if isinstance(retry, RetryPolicy):
            return retry
        return self._retry_policy if retry else None

    async def _run_step(self, fn, args, kwargs, policy: RetryPolicy | None):
        attempts = policy.max_attempts if policy else 1
        name = getattr(fn, "__qualname__", repr(fn))
        last_exception: Exception | None = None
        for attempt in range(attempts):
            async with self._semaphore:
                try:
                    return await fn(*args, **kwargs)
                except Exception as e:
                    last_exception = e
            if attempt < attempts - 1:
                delay = policy.delay_seconds(attempt)
                logger.warning("[%s] step %s failed (attempt %d/%d), retrying in %.1fs: %s",
                               self.handle.id, name, attempt + 1, attempts, delay, last_exception)
                await asyncio.sleep(delay)

        assert last_exception is not None
        logger.error("[%s] step %s failed after %d attempt(s): %s",
                     self.handle.id, name, attempts, last_exception)
        raise last_exception

    async def run_action(self, fn, *args, retry: bool | RetryPolicy = True, **kwargs):
        """Run a step that calls external services (retried by default)"""
        return await self._run_step(fn, args, kwargs, self._policy(retry))

    async def run_mutation(self, fn, *args, retry: bool | RetryPolicy = False, **kwargs):
        """Run a step that writes to the store"""
        return await self._run_step(fn, args, kwargs, self._policy(retry))

    async def run_query(self, fn, *args, retry: bool | RetryPolicy = False, **kwargs):
        """Run a step that reads from the store"""
        return await self._run_step(fn, args, kwargs, self._policy(retry))

    async def run_workflow(self, handler, **args):
        """Run another workflow handler inline as part of this run"""
        return await handler(self, **args)


class WorkflowEngine:
    """
    Starts workflow runs as asyncio tasks and tracks their results

    Tasks and callbacks are released when a run finishes. Final results are
    kept for the most recent `max_retained_results` runs so late `wait` and
    `status` calls can still answer.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        max_parallelism: int = 10,
        max_retained_results: int = 1000,
    ):
        if max_parallelism < 1:
            raise ValueError("max_parallelism must be at least 1.")
        if max_retained_results < 1:
            raise ValueError("max_retained_results must be at least 1.")
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_parallelism = max_parallelism
        self.max_retained_results = max_retained_results
        self._tasks: dict[str, asyncio.Task] = {}
        self._results: OrderedDict[str, WorkflowResult] = OrderedDict()
        self._callbacks: dict[str, OnComplete] = {}

    @classmethod
    def from_config(cls, config: RetryConfig) -> "WorkflowEngine":
        return cls(RetryPolicy.from_config(config), max_parallelism=config.max_parallelism)

    def start(
        self,
        name: str,
        handler,
        *,
        workflow_id: str | None = None,
        on_complete: OnComplete | None = None,
        **args,
    ) -> WorkflowHandle:
        """Schedule a run of handler(ctx, **args) and return its handle"""
        handle = WorkflowHandle(id=workflow_id or new_id(), name=name)
        ctx = StepContext(handle, self.retry_policy, asyncio.Semaphore(self.max_parallelism))
        if on_complete is not None:
            self._callbacks[handle.id] = on_complete
        self._tasks[handle.id] = asyncio.create_task(
            self._execute(handle, handler, ctx, args),
            name=f"workflow:{name}:{handle.id}",
        )
        logger.info("Started workflow %s (%s)", name, handle.id)
        return handle

    async def _execute(self, handle, handler, ctx, args) -> WorkflowResult:
        try:
            value = await handler(ctx, **args)
            result = WorkflowResult(WorkflowStatus.SUCCESS, return_value=value)
        except asyncio.CancelledError:
            result = WorkflowResult(WorkflowStatus.CANCELED)
        except Exception as e:
            logger.error("Workflow %s (%s) failed: %s", handle.name, handle.id, e)
            result = WorkflowResult(WorkflowStatus.FAILED, error=str(e) or type(e).__name__)
        return await self._finish(handle, result)

    async def _finish(self, handle: WorkflowHandle, result: WorkflowResult) -> WorkflowResult:
        self._remember(handle.id, result)
        self._tasks.pop(handle.id, None)
        on_complete = self._callbacks.pop(handle.id, None)
        if on_complete is not None:
            await on_complete(handle, result)
        return result

    def _remember(self, workflow_id: str, result: WorkflowResult) -> None:
        self._results[workflow_id] = result
        while len(self._results) > self.max_retained_results:
            self._results.popitem(last=False)

    def status(self, handle: WorkflowHandle) -> WorkflowStatus:
        result = self._results.get(handle.id)
        if result is not None:
            return result.status
        if handle.id not in self._tasks:
            raise KeyError(f"Unknown workflow {handle.id}")
        return WorkflowStatus.RUNNING

    async def wait(self, handle: WorkflowHandle) -> WorkflowResult:
        """Wait for a run (including its completion callback) to finish"""
        task = self._tasks.get(handle.id)
        if task is None:
            result = self._results.get(handle.id)
            if result is None:
                raise KeyError(f"Unknown workflow {handle.id}")
            return result
        await asyncio.wait({task})
        if task.cancelled():
            return await self._settle_unstarted(handle)
        return task.result()

    async def cancel(self, handle: WorkflowHandle) -> WorkflowResult:
        """Cancel a run; steps in flight receive CancelledError"""
        task = self._tasks.get(handle.id)
        if task is not None and not task.done():
            task.cancel()
        return await self.wait(handle)

    async def _settle_unstarted(self, handle: WorkflowHandle) -> WorkflowResult:
        # A task cancelled before its first step never reached _execute
        if handle.id not in self._tasks:
            return self._results[handle.id]
        return await self._finish(handle, WorkflowResult(WorkflowStatus.CANCELED))
