"""
Chunk Store

Append-only persistence of streamed response fragments for one generation
attempt. The generation executor is the only writer for a target, so indices
are trusted as given.
"""

from canvas_eval_core.domain.entities import ResponseChunk
from canvas_eval_core.infrastructure.storage.base import DocumentStore, StoreTransaction


class ChunkStore:

    def __init__(self, store: DocumentStore):
        self._store = store

    async def clear(self, target_id: str) -> int:
        """Delete all chunks of a target (no-op when there are none)"""
        async with self._store.transaction() as tx:
            return tx.delete_chunks(target_id)

    async def append(self, target_id: str, content: str, index: int) -> None:
        """Persist the next chunk of the current attempt"""
        async with self._store.transaction() as tx:
            tx.insert_chunk(ResponseChunk(target_id=target_id, content=content, index=index))

    async def consolidate(self, target_id: str) -> str:
        """Concatenate the chunks of a target in index order"""
        async with self._store.transaction() as tx:
            return self.consolidate_in(tx, target_id)

    @staticmethod
    def consolidate_in(tx: StoreTransaction, target_id: str) -> str:
        return "".join(chunk.content for chunk in tx.list_chunks(target_id))
