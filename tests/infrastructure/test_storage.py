"""
InMemoryStore のテスト

トランザクションの原子性、ステージングされた書き込み、チャンクの順序を確認する。
"""

import asyncio

import pytest

from canvas_eval_core.domain.entities import EvalItem, GenerationTarget, ResponseChunk
from canvas_eval_core.infrastructure.storage import EvalNotFound, InMemoryStore, TargetNotFound


async def _put_target(store, **kwargs) -> GenerationTarget:
    target = GenerationTarget(**kwargs)
    async with store.transaction() as tx:
        tx.put_target(target)
    return target


class TestTargets:

    @pytest.mark.asyncio
    async def test_put_and_read(self, store):
        target = await _put_target(store, prompt="X")
        loaded = await store.read_target(target.id)
        assert loaded == target
        assert loaded is not target

    @pytest.mark.asyncio
    async def test_missing_target(self, store):
        with pytest.raises(TargetNotFound):
            await store.read_target("nope")

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self, store):
        """取得したドキュメントを変更してもストアに反映されないこと"""
        target = await _put_target(store, prompt="X")
        loaded = await store.read_target(target.id)
        loaded.prompt = "changed"
        assert (await store.read_target(target.id)).prompt == "X"

    @pytest.mark.asyncio
    async def test_failed_transaction_is_discarded(self, store):
        """例外で終了したトランザクションの書き込みは破棄されること"""
        target = await _put_target(store, prompt="X")
        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                t = tx.get_target(target.id)
                t.prompt = "changed"
                tx.put_target(t)
                raise RuntimeError("abort")
        assert (await store.read_target(target.id)).prompt == "X"

    @pytest.mark.asyncio
    async def test_delete_cascades(self, store):
        target = await _put_target(store)
        item = EvalItem(target_id=target.id, criterion="c")
        async with store.transaction() as tx:
            tx.put_eval(item)
            tx.insert_chunk(ResponseChunk(target_id=target.id, content="a", index=0))
        async with store.transaction() as tx:
            tx.delete_target(target.id)
        async with store.transaction() as tx:
            with pytest.raises(EvalNotFound):
                tx.get_eval(item.id)
            assert tx.list_chunks(target.id) == []
            assert tx.list_evals(target.id) == []


class TestEvals:

    @pytest.mark.asyncio
    async def test_put_requires_target(self, store):
        async with store.transaction() as tx:
            with pytest.raises(TargetNotFound):
                tx.put_eval(EvalItem(target_id="missing"))

    @pytest.mark.asyncio
    async def test_list_sees_staged_writes(self, store):
        """同一トランザクション内の未コミットの書き込みが list_evals に見えること"""
        target = await _put_target(store)
        first = EvalItem(target_id=target.id, criterion="a")
        async with store.transaction() as tx:
            tx.put_eval(first)
        async with store.transaction() as tx:
            second = EvalItem(target_id=target.id, criterion="b")
            tx.put_eval(second)
            updated = tx.get_eval(first.id)
            updated.criterion = "a2"
            tx.put_eval(updated)
            criteria = sorted(item.criterion for item in tx.list_evals(target.id))
        assert criteria == ["a2", "b"]
        assert len(await store.read_evals(target.id)) == 2

    @pytest.mark.asyncio
    async def test_list_is_scoped_to_target(self, store):
        one = await _put_target(store)
        two = await _put_target(store)
        async with store.transaction() as tx:
            tx.put_eval(EvalItem(target_id=one.id, criterion="a"))
            tx.put_eval(EvalItem(target_id=two.id, criterion="b"))
        assert [e.criterion for e in await store.read_evals(two.id)] == ["b"]


class TestChunks:

    @pytest.mark.asyncio
    async def test_listed_by_index(self, store):
        target = await _put_target(store)
        async with store.transaction() as tx:
            for index, content in [(2, "c"), (0, "a"), (1, "b")]:
                tx.insert_chunk(ResponseChunk(target_id=target.id, content=content, index=index))
        async with store.transaction() as tx:
            assert [c.content for c in tx.list_chunks(target.id)] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_delete_returns_count(self, store):
        target = await _put_target(store)
        async with store.transaction() as tx:
            tx.insert_chunk(ResponseChunk(target_id=target.id, content="a", index=0))
        async with store.transaction() as tx:
            tx.insert_chunk(ResponseChunk(target_id=target.id, content="b", index=1))
            assert tx.delete_chunks(target.id) == 2
            assert tx.list_chunks(target.id) == []
        async with store.transaction() as tx:
            assert tx.delete_chunks(target.id) == 0


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_read_modify_write_is_atomic(self):
        """並行する read-modify-write が互いの更新を失わないこと"""
        store = InMemoryStore()
        target = await _put_target(store, prompt="")

        async def append(letter):
            async with store.transaction() as tx:
                t = tx.get_target(target.id)
                await asyncio.sleep(0)
                t.prompt += letter
                tx.put_target(t)

        await asyncio.gather(*(append(ch) for ch in "abcdefghij"))
        assert sorted((await store.read_target(target.id)).prompt) == list("abcdefghij")
