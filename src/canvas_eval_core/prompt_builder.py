"""
Prompt Builder

Compiles the generation system prompt from the rubric and builds the
LLM-as-judge prompt and verdict schema for a single rubric item.
"""

from collections.abc import Iterable

from canvas_eval_core.domain.constants import EvalKind

SYSTEM_PROMPT_HEADER = (
    "You are a helpful assistant. Your response will be evaluated against the following criteria. "
    "Please ensure your response satisfies these requirements:"
)
SYSTEM_PROMPT_FOOTER = (
    "Provide a thorough, well-structured response that addresses the user's prompt "
    "while meeting the above criteria."
)

_TYPE_INSTRUCTIONS = {
    EvalKind.PASS_FAIL: (
        "Determine if the response PASSES or FAILS the criteria. "
        "A response passes only if it fully satisfies the requirements."
    ),
    EvalKind.SUBJECTIVE: (
        "Rate the response on a scale from 0 to 1, where 0 means the response completely fails "
        "to meet the criteria and 1 means it perfectly satisfies them."
    ),
}

_ANSWER_FORMATS = {
    EvalKind.PASS_FAIL: 'Return JSON: {"passed": <true|false>, "explanation": "brief reason"}',
    EvalKind.SUBJECTIVE: 'Return JSON: {"score": <float 0.0-1.0>, "explanation": "brief reason"}',
}

# JSON Schemas for structured verdict output
VERDICT_SCHEMAS = {
    EvalKind.PASS_FAIL: {
        "type": "object",
        "properties": {
            "passed": {"type": "boolean"},
            "explanation": {"type": "string"},
        },
        "required": ["passed", "explanation"],
        "additionalProperties": False,
    },
    EvalKind.SUBJECTIVE: {
        "type": "object",
        "properties": {
            "score": {"type": "number", "minimum": 0, "maximum": 1},
            "explanation": {"type": "string"},
        },
        "required": ["score", "explanation"],
        "additionalProperties": False,
    },
}


def compile_system_prompt(criteria: Iterable[str | None]) -> str | None:
    """
    Compile a system prompt listing the rubric requirements

    Args:
        criteria: Criterion texts of the target's eval items (blank ones are skipped)

    Returns:
        The system prompt, or None when no item has a criterion
    """
    requirements = [c.strip() for c in criteria if c and c.strip()]
    if not requirements:
        return None

    numbered = "\n".join(f"{i + 1}. {c}" for i, c in enumerate(requirements))
    return f"{SYSTEM_PROMPT_HEADER}\n\n{numbered}\n\n{SYSTEM_PROMPT_FOOTER}"


def build_eval_prompt(criterion: str, response: str, kind: EvalKind | str) -> str:
    """
    Build the judge prompt for one rubric item

    Args:
        criterion: The requirement to check
        response: Candidate text to evaluate
        kind: pass_fail or subjective

    Returns:
        Prompt string asking for a JSON verdict
    """
    kind = EvalKind(kind)
    parts: list[str] = [
        "You are an expert evaluator assessing whether an LLM response meets specific criteria.",
        "",
        "## Evaluation Criteria",
        criterion,
        "",
        "## Response to Evaluate",
        response,
        "",
        "## Instructions",
        _TYPE_INSTRUCTIONS[kind],
        "",
        "Provide a clear, concise explanation for your assessment.",
        _ANSWER_FORMATS[kind],
        "Respond ONLY with the JSON object.",
    ]
    return "\n".join(parts)
