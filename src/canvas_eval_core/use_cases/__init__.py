"""
Use Cases Layer

Chunk persistence, streaming generation and the target service called from
the runner and API layers.
"""

from canvas_eval_core.use_cases.chunk_store import ChunkStore
from canvas_eval_core.use_cases.generation import (
    CancellationToken,
    GenerationExecutor,
    ResponseBuffer,
    StreamIdleTimeout,
)
from canvas_eval_core.use_cases.targets import TargetService

__all__ = [
    # chunk_store
    "ChunkStore",
    # generation
    "CancellationToken",
    "GenerationExecutor",
    "ResponseBuffer",
    "StreamIdleTimeout",
    # targets
    "TargetService",
]
