"""
Scoring sub-package

Provides the LLM judge for single rubric items and the round aggregator.
"""

from canvas_eval_core.scoring.aggregator import Aggregator, compute_aggregate
from canvas_eval_core.scoring.llm_judge import EvalJudge, JudgeParseError, parse_judgment

__all__ = [
    # aggregation
    "Aggregator",
    "compute_aggregate",
    # llm judge
    "EvalJudge",
    "JudgeParseError",
    "parse_judgment",
]
