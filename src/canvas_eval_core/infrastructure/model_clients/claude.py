"""
Anthropic Claude model client
"""

import json
import os
import time
from typing import AsyncIterator

from anthropic import AsyncAnthropic, APIConnectionError, RateLimitError, APIStatusError

from canvas_eval_core.domain.value_objects import ModelResponse
from canvas_eval_core.infrastructure.model_clients.base import ModelClient, RetryMixin

_STRUCTURED_TOOL = "submit_structured_output"


def _output_text(content) -> str:
    """Text of the response, or the JSON input of a structured-output tool call"""
    for block in content:
        if getattr(block, "type", "") == "tool_use" and block.name == _STRUCTURED_TOOL:
            return json.dumps(block.input)
    return "".join(block.text for block in content if getattr(block, "type", "") == "text").strip()


class ClaudeClient(RetryMixin, ModelClient):
    """Claude client using the Anthropic API"""

    def __init__(
        self,
        model_name: str,
        api_key: str | None = None,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        max_tokens: int = 4096,
        timeout_seconds: int = 120,
    ):
        """
        Args:
            model_name: Model name (e.g. claude-sonnet-4-5 or anthropic/claude-sonnet-4-5)
            api_key: Anthropic API key (falls back to environment variable if not specified)
            max_retries: Maximum number of attempts for generate() (default: 3)
            retry_delay_seconds: Initial backoff delay (default: 1.0)
            max_tokens: Maximum number of output tokens (default: 4096)
            timeout_seconds: Request timeout (default: 120)
        """
        self.model_name = model_name
        # Strip the gateway prefix to get the model name for the API
        self.api_model_name = model_name.removeprefix("anthropic/")
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.max_tokens = max_tokens

        if not self.api_key:
            raise ValueError("ANTHROPIC_API_KEY is not set")

        self.client = AsyncAnthropic(api_key=self.api_key, timeout=timeout_seconds)

    def _request(self, prompt: str, system_prompt: str | None) -> dict:
        params = dict(
            model=self.api_model_name,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        if system_prompt:
            params["system"] = system_prompt
        return params

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        output_schema: dict | None = None,
    ) -> ModelResponse:
        """
        Send a prompt and retrieve the response

        Args:
            prompt: Input prompt
            system_prompt: Optional system prompt
            output_schema: JSON Schema forced through a single tool call

        Returns:
            ModelResponse: The model's response

        Raises:
            Exception: If the maximum number of retries is exceeded
        """
        async def _call():
            start_time = time.time()
            params = self._request(prompt, system_prompt)
            if output_schema is not None:
                params["tools"] = [{
                    "name": _STRUCTURED_TOOL,
                    "description": "Submit the answer in the required structure",
                    "input_schema": output_schema,
                }]
                params["tool_choice"] = {"type": "tool", "name": _STRUCTURED_TOOL}
            response = await self.client.messages.create(temperature=0.0, **params)
            end_time = time.time()

            latency_ms = int((end_time - start_time) * 1000)
            output = _output_text(response.content)

            # Retrieve token usage
            input_tokens = getattr(response.usage, "input_tokens", 0) or 0
            output_tokens = getattr(response.usage, "output_tokens", 0) or 0

            return ModelResponse(
                output=output,
                latency_ms=latency_ms,
                model_name=self.model_name,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            )

        return await self._with_retry(
            _call,
            retryable_exceptions=(APIConnectionError, RateLimitError, APIStatusError),
        )

    async def stream(self, prompt: str, system_prompt: str | None = None) -> AsyncIterator[str]:
        async with self.client.messages.stream(**self._request(prompt, system_prompt)) as stream:
            async for text in stream.text_stream:
                if text:
                    yield text
