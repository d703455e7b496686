"""
Model client factory

Creates the appropriate client instance based on the model identifier.
"""

from __future__ import annotations

from canvas_eval_core.workflow_config import WorkflowConfig, load_config
from canvas_eval_core.infrastructure.model_clients.base import ModelClient
from canvas_eval_core.infrastructure.model_clients.vertex_ai import VertexAIClient
from canvas_eval_core.infrastructure.model_clients.claude import ClaudeClient
from canvas_eval_core.infrastructure.model_clients.openai_compat import OpenAICompatClient


def create_client(model_name: str, config: WorkflowConfig | None = None) -> ModelClient:
    """
    Create the appropriate client based on the model identifier

    Args:
        model_name: Model identifier (e.g. openai/gpt-4o, anthropic/claude-sonnet-4-5, gemini-2.5-flash)
        config: WorkflowConfig (loads from env if not provided)

    Returns:
        ModelClient: The appropriate client instance
    """
    if config is None:
        config = load_config()

    timeout = config.models.timeout_seconds
    retries = config.models.max_retries
    retry_delay = config.models.retry_delay_seconds
    max_tokens = config.streaming.max_tokens

    if model_name.startswith(("claude", "anthropic/")):
        return ClaudeClient(
            model_name,
            max_retries=retries,
            retry_delay_seconds=retry_delay,
            max_tokens=max_tokens,
            timeout_seconds=timeout,
        )
    elif model_name.startswith(("gemini", "google/")):
        return VertexAIClient(
            model_name,
            timeout_seconds=timeout,
            max_retries=retries,
            retry_delay_seconds=retry_delay,
            max_tokens=max_tokens,
        )
    else:
        return OpenAICompatClient(
            model_name,
            base_url=None if model_name.startswith("lmstudio/") else config.openai_compat.base_url,
            api_key=None if model_name.startswith("lmstudio/") else config.openai_compat.api_key,
            max_retries=retries,
            retry_delay_seconds=retry_delay,
            max_tokens=max_tokens,
            timeout_seconds=timeout,
        )
