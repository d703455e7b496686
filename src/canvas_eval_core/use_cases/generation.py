"""
Response Generation

Runs one end-to-end streaming generation attempt for a target:
clear chunks, stream tokens from the model, persist them in batches,
watch for user cancellation, and consolidate the chunks into the target's
response. A failed attempt leaves the target "generating" with a retry
marker and re-raises so the workflow retry policy can start a new attempt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from typing import AsyncIterator, Callable

from canvas_eval_core.domain.constants import NO_PROMPT_ERROR
from canvas_eval_core.domain.entities import utcnow
from canvas_eval_core.domain.lifecycle import (
    begin_evals,
    begin_generation,
    complete_generation,
    mark_eval_running,
    record_retry_error,
)
from canvas_eval_core.domain.value_objects import GenerationResult
from canvas_eval_core.infrastructure.model_clients.base import ModelClient
from canvas_eval_core.infrastructure.storage.base import DocumentStore
from canvas_eval_core.prompt_builder import compile_system_prompt
from canvas_eval_core.use_cases.chunk_store import ChunkStore
from canvas_eval_core.workflow_config import WorkflowConfig

logger = logging.getLogger(__name__)


class StreamIdleTimeout(Exception):
    """No token arrived within the idle timeout"""
    pass


class CancellationToken:
    """Cooperative cancellation flag shared by the poll task and the stream loop"""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class ResponseBuffer:
    """
    Batches streamed text into chunks.

    A chunk is written when the buffer holds at least `min_chunk_size`
    characters and `flush_interval_ms` have passed since the last write,
    or when a flush is forced. Empty buffers are never written.
    """

    def __init__(
        self,
        chunks: ChunkStore,
        target_id: str,
        min_chunk_size: int,
        flush_interval_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._chunks = chunks
        self._target_id = target_id
        self._min_chunk_size = min_chunk_size
        self._flush_interval_ms = flush_interval_ms
        self._clock = clock
        self._buffer = ""
        self._last_flush = clock()
        self.next_index = 0

    async def write(self, text: str) -> None:
        self._buffer += text
        await self.flush()

    async def flush(self, force: bool = False) -> None:
        now = self._clock()
        due = force or (
            len(self._buffer) >= self._min_chunk_size
            and (now - self._last_flush) * 1000 >= self._flush_interval_ms
        )
        if due and self._buffer:
            await self._chunks.append(self._target_id, self._buffer, self.next_index)
            self._buffer = ""
            self.next_index += 1
            self._last_flush = now


class GenerationExecutor:
    """Drives one streaming generation attempt for a target"""

    def __init__(
        self,
        store: DocumentStore,
        client_factory: Callable[[str], ModelClient],
        config: WorkflowConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            store: Document store holding targets, evals and chunks
            client_factory: Builds a ModelClient for a model identifier
            config: WorkflowConfig (defaults when not provided)
            clock: Monotonic clock in seconds, used for flush batching
        """
        self._store = store
        self._chunks = ChunkStore(store)
        self._client_factory = client_factory
        self._config = config or WorkflowConfig()
        self._clock = clock

    async def generate(self, target_id: str, skip_evals: bool = False) -> GenerationResult:
        """
        Run one generation attempt

        Args:
            target_id: Target to generate for
            skip_evals: When False, the round is pre-marked as running on completion

        Returns:
            GenerationResult (success=False only when the target has no prompt)

        Raises:
            Exception: Any streaming error, after recording it as a retry marker
        """
        target = await self._store.read_target(target_id)
        if not target.has_prompt:
            logger.info("Target %s has no prompt, skipping generation", target_id)
            return GenerationResult(success=False, error=NO_PROMPT_ERROR)
        evals = await self._store.read_evals(target_id)

        await self._chunks.clear(target_id)
        await self._begin(target_id)

        if await self._is_cancelled(target_id):
            logger.info("Target %s was cancelled before streaming started", target_id)
            await self._finalize(target_id, prepare_evals=False)
            return GenerationResult(success=True, cancelled=True)

        streaming = self._config.streaming
        token = CancellationToken()
        poller = asyncio.create_task(self._poll_cancellation(target_id, token))
        try:
            model = target.model or self._config.models.default_prompt_model
            client = self._client_factory(model)
            system_prompt = compile_system_prompt(item.criterion for item in evals)
            buffer = ResponseBuffer(
                self._chunks,
                target_id,
                min_chunk_size=streaming.min_chunk_size,
                flush_interval_ms=streaming.flush_interval_ms,
                clock=self._clock,
            )

            cancelled = await self._consume(client.stream(target.prompt, system_prompt), token, buffer)
            await buffer.flush(force=True)
            await self._finalize(target_id, prepare_evals=not skip_evals and not cancelled)

            if cancelled:
                logger.info("Generation for %s was cancelled, partial response saved (%d chunks)",
                            target_id, buffer.next_index)
            else:
                logger.info("Generation for %s complete (%d chunks)", target_id, buffer.next_index)
            return GenerationResult(success=True, cancelled=cancelled)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.warning("Generation for %s failed: %s", target_id, message)
            await self._record_retry_error(target_id, message)
            raise
        finally:
            poller.cancel()
            await asyncio.wait({poller})
            if not poller.cancelled() and poller.exception() is not None:
                logger.warning("Cancellation poller for %s stopped: %s", target_id, poller.exception())

    async def _consume(self, stream: AsyncIterator[str], token: CancellationToken, buffer: ResponseBuffer) -> bool:
        """
        Feed the stream into the buffer. Returns True if cancellation stopped it.

        The stream is iterated by a single pump task, so cancelling that task
        closes the stream and aborts the request.
        """
        loop = asyncio.get_running_loop()
        idle_timeout = self._config.streaming.stream_idle_timeout_seconds
        last_token_at = loop.time()

        async def pump() -> bool:
            nonlocal last_token_at
            async with aclosing(stream):
                async for text in stream:
                    last_token_at = loop.time()
                    await buffer.write(text)
                    if token.cancelled:
                        return True
            return False

        pump_task = asyncio.create_task(pump())
        cancel_wait = asyncio.create_task(token.wait())
        try:
            while True:
                timeout = None
                if idle_timeout:
                    timeout = max(0.0, last_token_at + idle_timeout - loop.time())
                done, _ = await asyncio.wait(
                    {pump_task, cancel_wait},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if pump_task in done:
                    return pump_task.result()
                if cancel_wait in done:
                    return True
                if idle_timeout and loop.time() - last_token_at >= idle_timeout:
                    raise StreamIdleTimeout(f"No tokens received for {idle_timeout:g}s")
        finally:
            for task in (pump_task, cancel_wait):
                task.cancel()
            await asyncio.wait({pump_task, cancel_wait})

    async def _poll_cancellation(self, target_id: str, token: CancellationToken) -> None:
        interval = self._config.streaming.cancellation_poll_ms / 1000
        while not token.cancelled:
            await asyncio.sleep(interval)
            try:
                if await self._is_cancelled(target_id):
                    logger.info("Cancellation requested for %s", target_id)
                    token.cancel()
            except Exception as e:
                logger.warning("Cancellation check for %s failed, polling continues: %s", target_id, e)

    async def _is_cancelled(self, target_id: str) -> bool:
        target = await self._store.read_target(target_id)
        return target.generation_cancelled_at is not None

    async def _begin(self, target_id: str) -> None:
        async with self._store.transaction() as tx:
            target = tx.get_target(target_id)
            target.response_state = begin_generation(target.response_state)
            tx.put_target(target)

    async def _record_retry_error(self, target_id: str, message: str) -> None:
        async with self._store.transaction() as tx:
            target = tx.get_target(target_id)
            target.response_state = record_retry_error(target.response_state, message, utcnow())
            tx.put_target(target)

    async def _finalize(self, target_id: str, prepare_evals: bool) -> None:
        """Consolidate chunks into the response, release them and mark the response complete"""
        async with self._store.transaction() as tx:
            target = tx.get_target(target_id)
            full_response = ChunkStore.consolidate_in(tx, target_id)
            tx.delete_chunks(target_id)
            now = utcnow()

            # An empty consolidation (early cancellation) keeps the previous response
            if full_response:
                target.response = full_response
                target.response_modified_at = now
            target.response_state = complete_generation(target.response_state, now)

            if prepare_evals and target.response and target.generation_cancelled_at is None:
                target.evals_state = begin_evals(target.evals_state, now)
                for item in tx.list_evals(target_id):
                    if item.has_criterion:
                        item.state = mark_eval_running(item.state)
                        tx.put_eval(item)

            tx.put_target(target)
