"""
Workflow Configuration

Manages loading from environment variables and default values.
"""

import os
from dataclasses import dataclass, field, asdict

from canvas_eval_core.domain.constants import (
    CANCELLATION_POLL_MS,
    DEFAULT_EVAL_WEIGHT,
    DEFAULT_MODEL,
    DEFAULT_SUBJECTIVE_THRESHOLD,
    DEFAULT_SUCCESS_THRESHOLD,
    FLUSH_INTERVAL_MS,
    MIN_CHUNK_SIZE,
)


def _env_int(key: str, default: int) -> int:
    """Convert an environment variable to int"""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        raise ValueError(f"The value '{val}' of environment variable '{key}' cannot be converted to an integer.")


def _env_float(key: str, default: float) -> float:
    """Convert an environment variable to float"""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"The value '{val}' of environment variable '{key}' cannot be converted to a number.")


def _env_str(key: str, default: str | None) -> str | None:
    """Get an environment variable as a string"""
    return os.environ.get(key, default)


@dataclass
class StreamingConfig:
    """Streaming generation configuration"""
    min_chunk_size: int = MIN_CHUNK_SIZE
    flush_interval_ms: int = FLUSH_INTERVAL_MS
    cancellation_poll_ms: int = CANCELLATION_POLL_MS
    stream_idle_timeout_seconds: float = 120.0  # 0 disables the watchdog
    max_tokens: int = 4096


@dataclass
class RetryConfig:
    """Workflow step retry and parallelism configuration"""
    max_attempts: int = 3
    initial_backoff_ms: int = 1000
    base: float = 2.0
    max_parallelism: int = 10


@dataclass
class EvalDefaultsConfig:
    """Rubric defaults"""
    success_threshold: float = DEFAULT_SUCCESS_THRESHOLD
    subjective_threshold: float = DEFAULT_SUBJECTIVE_THRESHOLD
    weight: float = DEFAULT_EVAL_WEIGHT


@dataclass
class ModelConfig:
    """Model selection and client configuration"""
    default_prompt_model: str = DEFAULT_MODEL
    grader_model: str = DEFAULT_MODEL
    timeout_seconds: int = 120
    max_retries: int = 3
    retry_delay_seconds: float = 1.0


@dataclass
class OpenAICompatConfig:
    """OpenAI-compatible endpoint configuration (OpenAI, LM Studio, gateways)"""
    base_url: str | None = None
    api_key: str | None = None


@dataclass
class WorkflowConfig:
    """Overall orchestration configuration"""
    streaming: StreamingConfig = field(default_factory=StreamingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    evals: EvalDefaultsConfig = field(default_factory=EvalDefaultsConfig)
    models: ModelConfig = field(default_factory=ModelConfig)
    openai_compat: OpenAICompatConfig = field(default_factory=OpenAICompatConfig)

    def to_dict(self) -> dict:
        """Convert to dictionary format"""
        return {"workflow_config": asdict(self)}

    @classmethod
    def from_dict(cls, data: dict) -> "WorkflowConfig":
        """Create from dictionary (handles presence/absence of workflow_config key)"""
        config_data = data.get("workflow_config", data)
        return cls(
            streaming=StreamingConfig(**config_data.get("streaming", {})),
            retry=RetryConfig(**config_data.get("retry", {})),
            evals=EvalDefaultsConfig(**config_data.get("evals", {})),
            models=ModelConfig(**config_data.get("models", {})),
            openai_compat=OpenAICompatConfig(**config_data.get("openai_compat", {})),
        )


def load_config() -> WorkflowConfig:
    """
    Load configuration from environment variables

    Uses default values when environment variables are not set.

    Returns:
        WorkflowConfig
    """
    streaming = StreamingConfig(
        min_chunk_size=_env_int("CANVAS_MIN_CHUNK_SIZE", MIN_CHUNK_SIZE),
        flush_interval_ms=_env_int("CANVAS_FLUSH_INTERVAL_MS", FLUSH_INTERVAL_MS),
        cancellation_poll_ms=_env_int("CANVAS_CANCELLATION_POLL_MS", CANCELLATION_POLL_MS),
        stream_idle_timeout_seconds=_env_float("CANVAS_STREAM_IDLE_TIMEOUT_SECONDS", 120.0),
        max_tokens=_env_int("CANVAS_MAX_TOKENS", 4096),
    )
    retry = RetryConfig(
        max_attempts=_env_int("CANVAS_RETRY_MAX_ATTEMPTS", 3),
        initial_backoff_ms=_env_int("CANVAS_RETRY_INITIAL_BACKOFF_MS", 1000),
        base=_env_float("CANVAS_RETRY_BASE", 2.0),
        max_parallelism=_env_int("CANVAS_MAX_PARALLELISM", 10),
    )
    evals = EvalDefaultsConfig(
        success_threshold=_env_float("CANVAS_SUCCESS_THRESHOLD", DEFAULT_SUCCESS_THRESHOLD),
        subjective_threshold=_env_float("CANVAS_SUBJECTIVE_THRESHOLD", DEFAULT_SUBJECTIVE_THRESHOLD),
        weight=_env_float("CANVAS_DEFAULT_EVAL_WEIGHT", DEFAULT_EVAL_WEIGHT),
    )
    models = ModelConfig(
        default_prompt_model=_env_str("CANVAS_DEFAULT_MODEL", DEFAULT_MODEL),
        grader_model=_env_str("CANVAS_GRADER_MODEL", DEFAULT_MODEL),
        timeout_seconds=_env_int("CANVAS_MODEL_TIMEOUT_SECONDS", 120),
        max_retries=_env_int("CANVAS_MODEL_MAX_RETRIES", 3),
        retry_delay_seconds=_env_float("CANVAS_MODEL_RETRY_DELAY_SECONDS", 1.0),
    )
    openai_compat = OpenAICompatConfig(
        base_url=_env_str("OPENAI_BASE_URL", None),
        api_key=_env_str("OPENAI_API_KEY", None),
    )
    return WorkflowConfig(
        streaming=streaming,
        retry=retry,
        evals=evals,
        models=models,
        openai_compat=openai_compat,
    )
