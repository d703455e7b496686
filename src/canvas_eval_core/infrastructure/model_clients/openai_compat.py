"""
OpenAI-compatible API model client

Serves OpenAI itself as well as LM Studio and other OpenAI-compatible gateways.
"""

import os
import time
from typing import AsyncIterator

import openai
from openai import AsyncOpenAI

from canvas_eval_core.domain.value_objects import ModelResponse
from canvas_eval_core.infrastructure.model_clients.base import ModelClient, RetryMixin

_PREFIXES = ("openai/", "lmstudio/")


class OpenAICompatClient(RetryMixin, ModelClient):
    """Client using the OpenAI chat completions API"""

    def __init__(
        self,
        model_name: str,
        base_url: str | None = None,
        api_key: str | None = None,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        max_tokens: int = 4096,
        timeout_seconds: int = 120,
    ):
        """
        Args:
            model_name: Model name (e.g. openai/gpt-4o, lmstudio/qwen2.5-7b)
            base_url: API endpoint (falls back to OPENAI_BASE_URL, then the OpenAI default)
            api_key: API key (falls back to OPENAI_API_KEY; "lm-studio" for lmstudio/ models)
            max_retries: Maximum number of attempts for generate() (default: 3)
            retry_delay_seconds: Initial backoff delay (default: 1.0)
            max_tokens: Maximum number of tokens (default: 4096)
            timeout_seconds: Request timeout (default: 120)
        """
        self.model_name = model_name
        # Strip the routing prefix to get the model name for the API
        self.api_model_name = model_name
        for prefix in _PREFIXES:
            self.api_model_name = self.api_model_name.removeprefix(prefix)
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.max_tokens = max_tokens

        # Configuration priority: argument > environment variable > default value
        if model_name.startswith("lmstudio/"):
            base_url = base_url or os.environ.get("LMSTUDIO_BASE_URL", "http://localhost:1234/v1")
            api_key = api_key or os.environ.get("LMSTUDIO_API_KEY", "lm-studio")
        else:
            base_url = base_url or os.environ.get("OPENAI_BASE_URL")
            api_key = api_key or os.environ.get("OPENAI_API_KEY")

        if not api_key:
            raise ValueError("OPENAI_API_KEY is not set")

        self.base_url = base_url
        self.client = AsyncOpenAI(base_url=base_url, api_key=api_key, timeout=timeout_seconds)

    def _messages(self, prompt: str, system_prompt: str | None) -> list[dict]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

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
            output_schema: JSON Schema sent as a strict json_schema response format

        Returns:
            ModelResponse: The model's response

        Raises:
            Exception: If the maximum number of retries is exceeded
        """
        async def _call():
            start_time = time.time()
            params = dict(
                model=self.api_model_name,
                messages=self._messages(prompt, system_prompt),
                temperature=0.0,
                max_tokens=self.max_tokens,
            )
            if output_schema is not None:
                params["response_format"] = {
                    "type": "json_schema",
                    "json_schema": {"name": "structured_output", "schema": output_schema, "strict": True},
                }
            response = await self.client.chat.completions.create(**params)
            end_time = time.time()

            latency_ms = int((end_time - start_time) * 1000)
            output = (response.choices[0].message.content or "").strip()

            # Retrieve token usage
            input_tokens = 0
            output_tokens = 0
            if response.usage:
                input_tokens = response.usage.prompt_tokens or 0
                output_tokens = response.usage.completion_tokens or 0

            return ModelResponse(
                output=output,
                latency_ms=latency_ms,
                model_name=self.model_name,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            )

        return await self._with_retry(
            _call,
            retryable_exceptions=(
                openai.APIConnectionError,
                openai.RateLimitError,
                openai.APIStatusError,
            ),
        )

    async def stream(self, prompt: str, system_prompt: str | None = None) -> AsyncIterator[str]:
        stream = await self.client.chat.completions.create(
            model=self.api_model_name,
            messages=self._messages(prompt, system_prompt),
            max_tokens=self.max_tokens,
            stream=True,
        )
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content
                if text:
                    yield text
        finally:
            await stream.close()
