"""
Vertex AI (Google GenAI SDK) model client
"""

import os
import time
from typing import AsyncIterator

from google import genai
from google.genai import errors as genai_errors
from google.genai.types import GenerateContentConfig, HttpOptions

from canvas_eval_core.domain.value_objects import ModelResponse
from canvas_eval_core.infrastructure.model_clients.base import ModelClient, RetryMixin


class VertexAIClient(RetryMixin, ModelClient):
    """Model client using Google GenAI SDK (via Vertex AI)"""

    def __init__(
        self,
        model_name: str,
        project_id: str | None = None,
        location: str | None = None,
        timeout_seconds: int = 120,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        max_tokens: int = 4096,
    ):
        """
        Args:
            model_name: Model name (e.g. gemini-2.5-flash or google/gemini-2.5-flash)
            project_id: GCP project ID (falls back to environment variable if not specified)
            location: Region (falls back to GCP_LOCATION, then "global")
            timeout_seconds: Timeout in seconds (default: 120)
            max_retries: Maximum number of attempts for generate() (default: 3)
            retry_delay_seconds: Initial backoff delay (default: 1.0)
            max_tokens: Maximum number of output tokens (default: 4096)
        """
        self.model_name = model_name
        self.api_model_name = model_name.removeprefix("google/")
        self.project_id = project_id or os.environ.get("GCP_PROJECT_ID")
        self.location = location or os.environ.get("GCP_LOCATION", "global")
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.max_tokens = max_tokens

        if not self.project_id:
            raise ValueError("GCP_PROJECT_ID is not set")

        # Timeout is configured via HttpOptions (milliseconds)
        self.client = genai.Client(
            vertexai=True,
            project=self.project_id,
            location=self.location,
            http_options=HttpOptions(timeout=timeout_seconds * 1000),
        )

    def _config(
        self,
        system_prompt: str | None,
        temperature: float | None = None,
        output_schema: dict | None = None,
    ) -> GenerateContentConfig:
        structured = {}
        if output_schema is not None:
            # The Gemini schema dialect has no additionalProperties
            schema = {k: v for k, v in output_schema.items() if k != "additionalProperties"}
            structured = dict(response_mime_type="application/json", response_schema=schema)
        return GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=self.max_tokens,
            system_instruction=system_prompt,
            **structured,
        )

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
            output_schema: JSON Schema passed as the response schema

        Returns:
            ModelResponse: The model's response

        Raises:
            Exception: If the maximum number of retries is exceeded
        """
        async def _call():
            start_time = time.time()
            response = await self.client.aio.models.generate_content(
                model=self.api_model_name,
                contents=prompt,
                config=self._config(system_prompt, temperature=0.0, output_schema=output_schema),
            )
            end_time = time.time()

            latency_ms = int((end_time - start_time) * 1000)

            # Retrieve token usage
            input_tokens = 0
            output_tokens = 0
            if getattr(response, "usage_metadata", None):
                input_tokens = getattr(response.usage_metadata, "prompt_token_count", 0) or 0
                output_tokens = getattr(response.usage_metadata, "candidates_token_count", 0) or 0

            return ModelResponse(
                output=(response.text or "").strip(),
                latency_ms=latency_ms,
                model_name=self.model_name,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            )

        return await self._with_retry(
            _call,
            retryable_exceptions=(genai_errors.ServerError, genai_errors.ClientError),
        )

    async def stream(self, prompt: str, system_prompt: str | None = None) -> AsyncIterator[str]:
        response_stream = await self.client.aio.models.generate_content_stream(
            model=self.api_model_name,
            contents=prompt,
            config=self._config(system_prompt),
        )
        async for chunk in response_stream:
            if chunk.text:
                yield chunk.text
