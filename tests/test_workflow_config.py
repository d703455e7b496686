"""
workflow_config.pyのテスト
"""

import pytest

from canvas_eval_core.workflow_config import (
    EvalDefaultsConfig,
    ModelConfig,
    OpenAICompatConfig,
    RetryConfig,
    StreamingConfig,
    WorkflowConfig,
    load_config,
)

_ENV_KEYS = [
    "CANVAS_MIN_CHUNK_SIZE", "CANVAS_FLUSH_INTERVAL_MS", "CANVAS_CANCELLATION_POLL_MS",
    "CANVAS_STREAM_IDLE_TIMEOUT_SECONDS", "CANVAS_MAX_TOKENS",
    "CANVAS_RETRY_MAX_ATTEMPTS", "CANVAS_RETRY_INITIAL_BACKOFF_MS", "CANVAS_RETRY_BASE",
    "CANVAS_MAX_PARALLELISM",
    "CANVAS_SUCCESS_THRESHOLD", "CANVAS_SUBJECTIVE_THRESHOLD", "CANVAS_DEFAULT_EVAL_WEIGHT",
    "CANVAS_DEFAULT_MODEL", "CANVAS_GRADER_MODEL", "CANVAS_MODEL_TIMEOUT_SECONDS",
    "CANVAS_MODEL_MAX_RETRIES", "CANVAS_MODEL_RETRY_DELAY_SECONDS",
    "OPENAI_BASE_URL", "OPENAI_API_KEY",
]


class TestStreamingConfig:
    """StreamingConfig dataclassのテスト"""

    def test_defaults(self):
        config = StreamingConfig()
        assert config.min_chunk_size == 20
        assert config.flush_interval_ms == 200
        assert config.cancellation_poll_ms == 500
        assert config.stream_idle_timeout_seconds == 120.0
        assert config.max_tokens == 4096


class TestRetryConfig:
    """RetryConfig dataclassのテスト"""

    def test_defaults(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.initial_backoff_ms == 1000
        assert config.base == 2.0
        assert config.max_parallelism == 10


class TestEvalDefaultsConfig:
    """EvalDefaultsConfig dataclassのテスト"""

    def test_defaults(self):
        config = EvalDefaultsConfig()
        assert config.success_threshold == 0.7
        assert config.subjective_threshold == 0.5
        assert config.weight == 1.0


class TestWorkflowConfig:
    """WorkflowConfig dataclassのテスト"""

    def test_defaults(self):
        config = WorkflowConfig()
        assert isinstance(config.streaming, StreamingConfig)
        assert isinstance(config.retry, RetryConfig)
        assert isinstance(config.evals, EvalDefaultsConfig)
        assert isinstance(config.models, ModelConfig)
        assert isinstance(config.openai_compat, OpenAICompatConfig)

    def test_to_dict(self):
        d = WorkflowConfig().to_dict()
        assert "workflow_config" in d
        assert d["workflow_config"]["streaming"]["min_chunk_size"] == 20
        assert d["workflow_config"]["evals"]["success_threshold"] == 0.7

    def test_from_dict_with_key(self):
        data = {
            "workflow_config": {
                "retry": {"max_attempts": 5},
                "models": {"grader_model": "anthropic/claude-haiku-4-5"},
            }
        }
        config = WorkflowConfig.from_dict(data)
        assert config.retry.max_attempts == 5
        assert config.models.grader_model == "anthropic/claude-haiku-4-5"
        # デフォルト値は維持される
        assert config.retry.initial_backoff_ms == 1000

    def test_from_dict_without_key(self):
        config = WorkflowConfig.from_dict({"streaming": {"min_chunk_size": 64}})
        assert config.streaming.min_chunk_size == 64

    def test_roundtrip(self):
        original = WorkflowConfig(evals=EvalDefaultsConfig(success_threshold=0.9))
        restored = WorkflowConfig.from_dict(original.to_dict())
        assert restored == original


class TestLoadConfig:
    """load_config関数のテスト（環境変数ベース）"""

    def test_defaults_without_env(self, monkeypatch):
        """環境変数未設定時はデフォルト値を返す"""
        for key in _ENV_KEYS:
            monkeypatch.delenv(key, raising=False)

        config = load_config()
        assert config == WorkflowConfig()

    def test_custom_env_values(self, monkeypatch):
        monkeypatch.setenv("CANVAS_MIN_CHUNK_SIZE", "50")
        monkeypatch.setenv("CANVAS_STREAM_IDLE_TIMEOUT_SECONDS", "0")
        monkeypatch.setenv("CANVAS_RETRY_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("CANVAS_SUCCESS_THRESHOLD", "0.8")
        monkeypatch.setenv("CANVAS_GRADER_MODEL", "gemini-2.5-flash")
        monkeypatch.setenv("OPENAI_BASE_URL", "http://gateway.local/v1")

        config = load_config()
        assert config.streaming.min_chunk_size == 50
        assert config.streaming.stream_idle_timeout_seconds == 0.0
        assert config.retry.max_attempts == 5
        assert config.evals.success_threshold == 0.8
        assert config.models.grader_model == "gemini-2.5-flash"
        assert config.openai_compat.base_url == "http://gateway.local/v1"

    def test_invalid_int_env(self, monkeypatch):
        monkeypatch.setenv("CANVAS_MAX_PARALLELISM", "many")
        with pytest.raises(ValueError, match="CANVAS_MAX_PARALLELISM"):
            load_config()

    def test_invalid_float_env(self, monkeypatch):
        monkeypatch.setenv("CANVAS_RETRY_BASE", "fast")
        with pytest.raises(ValueError, match="CANVAS_RETRY_BASE"):
            load_config()
