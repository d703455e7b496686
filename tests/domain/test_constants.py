"""ドメイン定数のテスト"""

from canvas_eval_core.domain.constants import (
    AUTO_PASS_SCORES,
    CANCELLATION_POLL_MS,
    DEFAULT_SUBJECTIVE_THRESHOLD,
    DEFAULT_SUCCESS_THRESHOLD,
    FLUSH_INTERVAL_MS,
    MIN_CHUNK_SIZE,
    EvalKind,
    ResponseStatus,
)


def test_streaming_defaults():
    """ストリーミングのバッファ設定が既定値であること"""
    assert MIN_CHUNK_SIZE == 20
    assert FLUSH_INTERVAL_MS == 200
    assert CANCELLATION_POLL_MS == 500


def test_single_success_threshold_default():
    """成功閾値の既定値は0.7の1つだけであること"""
    assert DEFAULT_SUCCESS_THRESHOLD == 0.7
    assert DEFAULT_SUBJECTIVE_THRESHOLD == 0.5


def test_auto_pass_scores_cover_all_kinds():
    """全ての評価種別に自動合格スコアがあること"""
    assert set(AUTO_PASS_SCORES) == set(EvalKind)
    assert AUTO_PASS_SCORES[EvalKind.PASS_FAIL] == 1.0
    assert AUTO_PASS_SCORES[EvalKind.SUBJECTIVE] == 0.5


def test_status_values_are_strings():
    """ステータスがそのまま文字列として比較できること"""
    assert ResponseStatus.GENERATING == "generating"
    assert EvalKind("subjective") is EvalKind.SUBJECTIVE
