"""
LLM Judge

Implements EvalJudge, which asks a grader model to judge one rubric item
against a candidate response. Failed judge calls keep the item's previous
judgment when there is one, so a flaky grader never regresses a result.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Callable

from canvas_eval_core.domain.constants import AUTO_PASS_EXPLANATION, AUTO_PASS_SCORES, EvalKind
from canvas_eval_core.domain.entities import utcnow
from canvas_eval_core.domain.lifecycle import mark_eval_running, settle_eval_failure, settle_eval_success
from canvas_eval_core.domain.value_objects import JudgeOutcome, Judgment
from canvas_eval_core.infrastructure.model_clients.base import ModelClient
from canvas_eval_core.infrastructure.storage.base import DocumentStore
from canvas_eval_core.prompt_builder import VERDICT_SCHEMAS, build_eval_prompt
from canvas_eval_core.scoring.aggregator import Aggregator
from canvas_eval_core.workflow_config import WorkflowConfig

logger = logging.getLogger(__name__)


class JudgeParseError(Exception):
    """Error raised when the grader's answer cannot be parsed"""
    pass


# Regex patterns for verdict extraction
_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_PASSED_RE = re.compile(r"passed\W{0,3}\s*[:=]?\s*(true|false)", re.IGNORECASE)
_VERDICT_RE = re.compile(r"\b(PASS(?:ED|ES)?|FAIL(?:ED|S)?)\b")
_SCORE_RE = re.compile(r"score['\"]?\s*[:=]?\s*(-?(?:\d+(?:\.\d+)?|\.\d+))", re.IGNORECASE)
_BARE_FLOAT_RE = re.compile(r"^-?(?:\d+(?:\.\d+)?|\.\d+)$")
_EXPLANATION_RE = re.compile(r"explanation\W{0,3}\s*[:=]\s*\"?([^\"\n]+)", re.IGNORECASE)


def _checked_score(value: float) -> float:
    """Reject scores outside the range 0.0-1.0"""
    if not 0.0 <= value <= 1.0:
        raise JudgeParseError(f"Score out of range 0-1: {value}")
    return value


def _load_json(text: str) -> dict | None:
    match = _CODE_BLOCK_RE.search(text)
    candidate = match.group(1) if match else text
    for source in (candidate, _first_object(candidate)):
        if source is None:
            continue
        try:
            data = json.loads(source.strip())
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(data, dict):
            return data
    return None


def _first_object(text: str) -> str | None:
    match = _JSON_OBJECT_RE.search(text)
    return match.group(0) if match else None


def _as_bool(value) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "pass", "passed", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "fail", "failed", "no"):
        return False
    return None


def parse_judgment(raw: str, kind: EvalKind | str) -> Judgment:
    """
    Extract a judgment from the grader's answer

    Parse order:
    1. JSON extraction (also inside a code block)
    2. Regex fallback (no explanation unless one is found)
    3. Bare float (subjective only)
    4. JudgeParseError

    Args:
        raw: Grader output
        kind: pass_fail (score 1/0) or subjective (score within 0-1)

    Returns:
        Judgment

    Raises:
        JudgeParseError: When no verdict can be found or a score is out of range
    """
    kind = EvalKind(kind)
    text = raw.strip()

    # 1. JSON extraction
    data = _load_json(text)
    if data is not None:
        explanation = data.get("explanation") or data.get("reason")
        if kind == EvalKind.PASS_FAIL and "passed" in data:
            passed = _as_bool(data["passed"])
            if passed is not None:
                return Judgment(score=1.0 if passed else 0.0, explanation=explanation)
        if kind == EvalKind.SUBJECTIVE and "score" in data:
            try:
                score = float(data["score"])
            except (TypeError, ValueError):
                score = None
            if score is not None:
                return Judgment(score=_checked_score(score), explanation=explanation)

    # 2. Regex fallback
    explanation_match = _EXPLANATION_RE.search(text)
    explanation = explanation_match.group(1).strip() if explanation_match else None
    if kind == EvalKind.PASS_FAIL:
        m = _PASSED_RE.search(text)
        if m:
            return Judgment(score=1.0 if m.group(1).lower() == "true" else 0.0, explanation=explanation)
        m = _VERDICT_RE.search(text)
        if m:
            return Judgment(score=1.0 if m.group(1).startswith("PASS") else 0.0, explanation=explanation)
    else:
        m = _SCORE_RE.search(text)
        if m:
            return Judgment(score=_checked_score(float(m.group(1))), explanation=explanation)
        # 3. Bare float (when the response is only a number)
        if _BARE_FLOAT_RE.match(text):
            return Judgment(score=_checked_score(float(text)))

    raise JudgeParseError(f"Failed to parse {kind.value} verdict from grader response: {text[:200]}")


class EvalJudge:
    """
    Judges one rubric item with a grader model

    Every settlement (auto-pass, success, failure) is written in the same
    transaction as the guarded aggregation attempt for the item's round.
    """

    def __init__(
        self,
        store: DocumentStore,
        client_factory: Callable[[str], ModelClient],
        aggregator: Aggregator,
        config: WorkflowConfig | None = None,
    ):
        self._store = store
        self._client_factory = client_factory
        self._aggregator = aggregator
        self._config = config or WorkflowConfig()

    async def run(self, eval_id: str, response: str) -> JudgeOutcome:
        """
        Judge one item against a candidate response

        Args:
            eval_id: Eval item to judge
            response: Candidate text

        Returns:
            JudgeOutcome (success=False when the judge call failed; the item is
            settled either way)

        Raises:
            StoreError: Storage failures are not converted
        """
        async with self._store.transaction() as tx:
            item = tx.get_eval(eval_id)
            if not item.has_criterion:
                judgment = Judgment(score=AUTO_PASS_SCORES[item.kind], explanation=AUTO_PASS_EXPLANATION)
                item.state = settle_eval_success(item.state, judgment, utcnow())
                tx.put_eval(item)
                self._aggregator.settle_in(tx, item.target_id)
                return JudgeOutcome(eval_id=eval_id, success=True)

            item.state = mark_eval_running(item.state)
            tx.put_eval(item)

        try:
            grader = self._client_factory(item.model or self._config.models.grader_model)
            prompt = build_eval_prompt(item.criterion, response, item.kind)
            answer = await grader.generate(prompt, output_schema=VERDICT_SCHEMAS[EvalKind(item.kind)])
            judgment = parse_judgment(answer.output, item.kind)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.warning("Judge call for eval %s failed: %s", eval_id, message)
            return await self.settle_failure(eval_id, message)

        async with self._store.transaction() as tx:
            item = tx.get_eval(eval_id)
            item.state = settle_eval_success(item.state, judgment, utcnow())
            tx.put_eval(item)
            self._aggregator.settle_in(tx, item.target_id)

        logger.info("Eval %s judged: score=%.2f", eval_id, judgment.score)
        return JudgeOutcome(eval_id=eval_id, success=True)

    async def settle_failure(self, eval_id: str, message: str) -> JudgeOutcome:
        """Settle an item as failed, keeping its previous judgment if it has one"""
        async with self._store.transaction() as tx:
            item = tx.get_eval(eval_id)
            item.state = settle_eval_failure(item.state, message, utcnow())
            tx.put_eval(item)
            self._aggregator.settle_in(tx, item.target_id)

        if item.error is not None and item.score is not None:
            logger.warning("Eval %s kept its previous score %.2f after error", eval_id, item.score)
        else:
            logger.error("Eval %s failed: %s", eval_id, message)
        return JudgeOutcome(eval_id=eval_id, success=False, error=message)
