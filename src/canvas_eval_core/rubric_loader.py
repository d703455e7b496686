"""
Rubric Loader

Loads rubric definitions (success threshold plus eval items) from JSON files.
"""

import json
from dataclasses import dataclass

from canvas_eval_core.domain.constants import DEFAULT_EVAL_WEIGHT, EvalKind


@dataclass
class RubricItem:
    """One rubric requirement"""
    criterion: str
    kind: EvalKind = EvalKind.PASS_FAIL
    model: str | None = None  # Grader model (falls back to the configured grader)
    required: bool = False
    weight: float = DEFAULT_EVAL_WEIGHT
    threshold: float | None = None  # subjective only

    def __post_init__(self):
        """Post-initialization validation"""
        try:
            self.kind = EvalKind(self.kind)
        except ValueError:
            raise ValueError(
                f"Invalid eval kind: {self.kind}. Valid values: {[k.value for k in EvalKind]}"
            )
        if self.weight <= 0:
            raise ValueError(f"weight must be positive: {self.weight}")
        if self.threshold is not None and not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be between 0 and 1: {self.threshold}")


@dataclass
class RubricSpec:
    """Rubric definition"""
    evals: list[RubricItem]
    success_threshold: float | None = None  # Falls back to the configured default


def _parse_item(data: dict, file_path: str) -> RubricItem:
    if "criterion" not in data:
        raise KeyError(f"Required field 'criterion' is missing in an eval: {file_path}")
    return RubricItem(
        criterion=data["criterion"],
        kind=data.get("kind", EvalKind.PASS_FAIL.value),
        model=data.get("model"),
        required=bool(data.get("required", False)),
        weight=float(data.get("weight", DEFAULT_EVAL_WEIGHT)),
        threshold=data.get("threshold"),
    )


def load_rubric(file_path: str) -> RubricSpec:
    """
    Load a rubric JSON

    Args:
        file_path: Path to the rubric JSON file

    Returns:
        RubricSpec: Rubric object

    Raises:
        FileNotFoundError: If the file does not exist
        KeyError: If a required field is missing
        ValueError: If a field has an invalid value
    """
    with open(file_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if "evals" not in data:
        raise KeyError(f"Required field 'evals' is missing: {file_path}")

    success_threshold = data.get("success_threshold")
    if success_threshold is not None and not 0.0 <= float(success_threshold) <= 1.0:
        raise ValueError(f"success_threshold must be between 0 and 1: {success_threshold}")

    return RubricSpec(
        evals=[_parse_item(item, file_path) for item in data["evals"]],
        success_threshold=float(success_threshold) if success_threshold is not None else None,
    )
