"""
In-memory document store

Serializes transactions with a single asyncio lock. Writes are staged in the
transaction and applied on successful exit, so a transaction that raises
leaves the store untouched.
"""

import asyncio
import copy
from contextlib import asynccontextmanager
from typing import AsyncIterator

from canvas_eval_core.domain.entities import EvalItem, GenerationTarget, ResponseChunk
from canvas_eval_core.infrastructure.storage.base import (
    DocumentStore,
    EvalNotFound,
    StoreTransaction,
    TargetNotFound,
)


class _Tables:
    def __init__(self) -> None:
        self.targets: dict[str, GenerationTarget] = {}
        self.evals: dict[str, EvalItem] = {}
        self.chunks: dict[str, list[ResponseChunk]] = {}


class _InMemoryTransaction(StoreTransaction):

    def __init__(self, tables: _Tables) -> None:
        self._tables = tables
        # None marks a deletion
        self._targets: dict[str, GenerationTarget | None] = {}
        self._evals: dict[str, EvalItem | None] = {}
        self._new_chunks: dict[str, list[ResponseChunk]] = {}
        self._cleared: set[str] = set()

    # --- targets -----------------------------------------------------------

    def _target(self, target_id: str) -> GenerationTarget | None:
        if target_id in self._targets:
            return self._targets[target_id]
        return self._tables.targets.get(target_id)

    def get_target(self, target_id: str) -> GenerationTarget:
        target = self._target(target_id)
        if target is None:
            raise TargetNotFound(target_id)
        return copy.deepcopy(target)

    def put_target(self, target: GenerationTarget) -> None:
        self._targets[target.id] = copy.deepcopy(target)

    def delete_target(self, target_id: str) -> None:
        if self._target(target_id) is None:
            raise TargetNotFound(target_id)
        for item in self.list_evals(target_id):
            self._evals[item.id] = None
        self.delete_chunks(target_id)
        self._targets[target_id] = None

    # --- evals -------------------------------------------------------------

    def _eval(self, eval_id: str) -> EvalItem | None:
        if eval_id in self._evals:
            return self._evals[eval_id]
        return self._tables.evals.get(eval_id)

    def get_eval(self, eval_id: str) -> EvalItem:
        item = self._eval(eval_id)
        if item is None:
            raise EvalNotFound(eval_id)
        return copy.deepcopy(item)

    def put_eval(self, item: EvalItem) -> None:
        if self._target(item.target_id) is None:
            raise TargetNotFound(item.target_id)
        self._evals[item.id] = copy.deepcopy(item)

    def list_evals(self, target_id: str) -> list[EvalItem]:
        ids = [eid for eid, e in self._tables.evals.items() if e.target_id == target_id]
        ids += [
            eid for eid, e in self._evals.items()
            if e is not None and e.target_id == target_id and eid not in self._tables.evals
        ]
        items = (self._eval(eid) for eid in ids)
        return [copy.deepcopy(item) for item in items if item is not None]

    # --- chunks ------------------------------------------------------------

    def insert_chunk(self, chunk: ResponseChunk) -> None:
        self._new_chunks.setdefault(chunk.target_id, []).append(copy.deepcopy(chunk))

    def list_chunks(self, target_id: str) -> list[ResponseChunk]:
        base = [] if target_id in self._cleared else self._tables.chunks.get(target_id, [])
        chunks = base + self._new_chunks.get(target_id, [])
        return [copy.deepcopy(c) for c in sorted(chunks, key=lambda c: c.index)]

    def delete_chunks(self, target_id: str) -> int:
        count = len(self.list_chunks(target_id))
        self._cleared.add(target_id)
        self._new_chunks.pop(target_id, None)
        return count

    # --- commit ------------------------------------------------------------

    def commit(self) -> None:
        for target_id in self._cleared:
            self._tables.chunks.pop(target_id, None)
        for target_id, chunks in self._new_chunks.items():
            self._tables.chunks.setdefault(target_id, []).extend(chunks)
        for eval_id, item in self._evals.items():
            if item is None:
                self._tables.evals.pop(eval_id, None)
            else:
                self._tables.evals[eval_id] = item
        for target_id, target in self._targets.items():
            if target is None:
                self._tables.targets.pop(target_id, None)
            else:
                self._tables.targets[target_id] = target


class InMemoryStore(DocumentStore):
    """Process-local store used by the CLI and the tests"""

    def __init__(self) -> None:
        self._tables = _Tables()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        async with self._lock:
            tx = _InMemoryTransaction(self._tables)
            yield tx
            tx.commit()
