"""
Domain Constants

Centrally manages constants shared by generation, judging and aggregation.
"""

from enum import Enum


class ResponseStatus(str, Enum):
    """Response generation lifecycle status"""

    IDLE = "idle"
    GENERATING = "generating"
    COMPLETE = "complete"
    ERROR = "error"


class EvalsStatus(str, Enum):
    """Lifecycle status of one evaluation round (target level)"""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class EvalStatus(str, Enum):
    """Lifecycle status of a single rubric item"""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class EvalKind(str, Enum):
    """Rubric item kind"""

    PASS_FAIL = "pass_fail"
    SUBJECTIVE = "subjective"


# Streaming buffer settings
MIN_CHUNK_SIZE = 20
FLUSH_INTERVAL_MS = 200
CANCELLATION_POLL_MS = 500

# Rubric defaults
DEFAULT_SUCCESS_THRESHOLD = 0.7
DEFAULT_SUBJECTIVE_THRESHOLD = 0.5
DEFAULT_EVAL_WEIGHT = 1.0

# Neutral scores given to items without criteria
AUTO_PASS_SCORES = {
    EvalKind.PASS_FAIL: 1.0,
    EvalKind.SUBJECTIVE: 0.5,
}
AUTO_PASS_EXPLANATION = "No evaluation criteria defined"

# Fallback model when a target or eval does not name one
DEFAULT_MODEL = "openai/gpt-4o"

NO_PROMPT_ERROR = "No prompt to generate from"
