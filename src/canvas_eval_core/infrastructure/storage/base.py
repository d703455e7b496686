"""
Document store interface

Targets, eval items and response chunks live in a transactional document
store. All access goes through `DocumentStore.transaction()`; a
read-modify-write inside one transaction is atomic with respect to every
other transaction.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager

from canvas_eval_core.domain.entities import EvalItem, GenerationTarget, ResponseChunk


class StoreError(Exception):
    """Base class for storage errors"""
    pass


class TargetNotFound(StoreError):
    def __init__(self, target_id: str):
        super().__init__(f"Target {target_id} not found")
        self.target_id = target_id


class EvalNotFound(StoreError):
    def __init__(self, eval_id: str):
        super().__init__(f"Eval {eval_id} not found")
        self.eval_id = eval_id


class StoreTransaction(ABC):
    """Operations available inside a transaction. Returned documents are copies."""

    @abstractmethod
    def get_target(self, target_id: str) -> GenerationTarget: ...

    @abstractmethod
    def put_target(self, target: GenerationTarget) -> None: ...

    @abstractmethod
    def delete_target(self, target_id: str) -> None:
        """Delete a target together with its eval items and chunks"""

    @abstractmethod
    def get_eval(self, eval_id: str) -> EvalItem: ...

    @abstractmethod
    def put_eval(self, item: EvalItem) -> None: ...

    @abstractmethod
    def list_evals(self, target_id: str) -> list[EvalItem]: ...

    @abstractmethod
    def insert_chunk(self, chunk: ResponseChunk) -> None: ...

    @abstractmethod
    def list_chunks(self, target_id: str) -> list[ResponseChunk]:
        """Chunks of a target ordered by index ascending"""

    @abstractmethod
    def delete_chunks(self, target_id: str) -> int:
        """Delete every chunk of a target and return how many were removed"""


class DocumentStore(ABC):
    """Transactional document store"""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[StoreTransaction]:
        """Open a serializable transaction"""

    async def read_target(self, target_id: str) -> GenerationTarget:
        """Snapshot of one target"""
        async with self.transaction() as tx:
            return tx.get_target(target_id)

    async def read_evals(self, target_id: str) -> list[EvalItem]:
        """Snapshot of a target's eval items"""
        async with self.transaction() as tx:
            return tx.list_evals(target_id)
