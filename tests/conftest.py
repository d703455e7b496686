"""
共通フィクスチャ

インメモリストア、テスト用の高速な設定、スクリプト化されたモデルクライアントを提供する。
"""

import asyncio

import pytest

from canvas_eval_core.domain.value_objects import ModelResponse
from canvas_eval_core.infrastructure.model_clients.base import ModelClient
from canvas_eval_core.infrastructure.storage import InMemoryStore
from canvas_eval_core.workflow_config import RetryConfig, StreamingConfig, WorkflowConfig


class FakeModelClient(ModelClient):
    """
    テスト用のモデルクライアント

    stream() は tokens を順に返し、fail_after 個のトークンの後に stream_error を送出する。
    generate() は routes のキーを含むプロンプトにはその値を、それ以外は answers を順に返す
    （Exception の要素は送出する）。
    """

    def __init__(self, tokens=None, answers=None, model_name="fake/model"):
        self.model_name = model_name
        self.tokens: list[str] = list(tokens or [])
        self.answers: list = list(answers or [])
        self.routes: dict = {}
        self.token_delay = 0.0
        self.stream_error: Exception | None = None
        self.fail_after: int | None = None
        self.hang_after: int | None = None
        self.stream_calls: list[tuple[str, str | None]] = []
        self.generate_prompts: list[str] = []
        self.generate_schemas: list[dict | None] = []
        self.closed = False

    async def generate(self, prompt, system_prompt=None, output_schema=None):
        self.generate_prompts.append(prompt)
        self.generate_schemas.append(output_schema)
        for key, routed in self.routes.items():
            if key in prompt:
                return self._answer(routed)
        if not self.answers:
            raise RuntimeError("no scripted answer")
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        return self._answer(answer)

    def _answer(self, answer):
        if isinstance(answer, Exception):
            raise answer
        return ModelResponse(output=answer, latency_ms=1, model_name=self.model_name)

    async def stream(self, prompt, system_prompt=None):
        self.stream_calls.append((prompt, system_prompt))
        try:
            for i, token in enumerate(self.tokens):
                if self.fail_after is not None and i == self.fail_after:
                    raise self.stream_error
                if self.hang_after is not None and i == self.hang_after:
                    await asyncio.Event().wait()
                if self.token_delay:
                    await asyncio.sleep(self.token_delay)
                yield token
            if self.fail_after is not None and self.fail_after >= len(self.tokens):
                raise self.stream_error
        finally:
            self.closed = True


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def fast_config():
    """リトライ待機なし・短いポーリング間隔の設定"""
    return WorkflowConfig(
        streaming=StreamingConfig(
            min_chunk_size=1,
            flush_interval_ms=0,
            cancellation_poll_ms=10,
            stream_idle_timeout_seconds=5.0,
        ),
        retry=RetryConfig(max_attempts=3, initial_backoff_ms=0),
    )


@pytest.fixture
def fake_client():
    return FakeModelClient()


@pytest.fixture
def client_factory(fake_client):
    """全モデル名に対して同じ fake_client を返すファクトリ"""
    created: list[str] = []

    def factory(model_name: str) -> FakeModelClient:
        created.append(model_name)
        return fake_client

    factory.created = created
    return factory


@pytest.fixture
def make_client():
    """FakeModelClient を追加で作るためのファクトリ"""
    return FakeModelClient
