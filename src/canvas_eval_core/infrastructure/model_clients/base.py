"""
Model client base class and retry mixin

Defines the abstract base class inherited by all model clients
and the RetryMixin that consolidates shared retry logic.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator

from canvas_eval_core.domain.value_objects import ModelResponse

logger = logging.getLogger(__name__)


class RetryMixin:
    """Exponential backoff retry. Subclasses set self.max_retries and self.retry_delay_seconds."""

    max_retries: int = 3
    retry_delay_seconds: float = 1.0

    async def _with_retry(self, fn, retryable_exceptions=(Exception,)):
        """
        Execute with exponential backoff retry.

        Args:
            fn: The coroutine function to retry (a callable with no arguments)
            retryable_exceptions: Tuple of exception types eligible for retry

        Returns:
            The awaited return value of fn()

        Raises:
            ValueError: If max_retries is less than 1
            Exception: The last exception if max retries are exceeded
        """
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1.")

        last_exception: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                return await fn()
            except retryable_exceptions as e:
                last_exception = e
                if attempt < self.max_retries - 1:
                    delay = self.retry_delay_seconds * (2 ** attempt)
                    logger.warning("Model call failed (attempt %d/%d), retrying in %.1fs: %s",
                                   attempt + 1, self.max_retries, delay, e)
                    await asyncio.sleep(delay)

        assert last_exception is not None
        raise last_exception


class ModelClient(ABC):
    """Abstract base class for model clients"""

    model_name: str

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        output_schema: dict | None = None,
    ) -> ModelResponse:
        """
        Send a prompt and retrieve the full response

        When output_schema (a JSON Schema object) is given, the provider's
        structured-output mode is used and `output` holds the JSON text.
        """
        pass

    @abstractmethod
    def stream(self, prompt: str, system_prompt: str | None = None) -> AsyncIterator[str]:
        """
        Send a prompt and yield text fragments as they arrive.

        A stream is finite and not restartable; calling again starts a new attempt.
        Closing the iterator (aclose) aborts the underlying request.
        """
        pass
