"""
Storage package

Transactional document store for targets, eval items and response chunks.
"""

from canvas_eval_core.infrastructure.storage.base import (
    DocumentStore,
    EvalNotFound,
    StoreError,
    StoreTransaction,
    TargetNotFound,
)
from canvas_eval_core.infrastructure.storage.memory import InMemoryStore

__all__ = [
    "DocumentStore",
    "EvalNotFound",
    "InMemoryStore",
    "StoreError",
    "StoreTransaction",
    "TargetNotFound",
]
