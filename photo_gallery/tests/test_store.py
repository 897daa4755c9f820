import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from store import JsonFileStore, MemoryStore, StorageCapacityError


def test_file_store_roundtrip(tmp_path):
    store = JsonFileStore(tmp_path / "store")

    async def run():
        assert await store.get("missing") is None
        await store.set("ai-gallery-albums", '[{"id": "a"}]')
        assert await store.get("ai-gallery-albums") == '[{"id": "a"}]'
        await store.set("ai-gallery-annotations", "{}")
        assert await store.list_keys() == ["ai-gallery-albums", "ai-gallery-annotations"]
        await store.remove("ai-gallery-albums")
        await store.remove("ai-gallery-albums")
        return await store.list_keys()

    assert asyncio.run(run()) == ["ai-gallery-annotations"]
    assert not list((tmp_path / "store").glob("*.tmp"))


def test_file_store_quota_keeps_previous_value(tmp_path):
    store = JsonFileStore(tmp_path / "store", quota=20)

    async def run():
        await store.set("k", "x" * 10)
        # replacing a value only counts the new size
        await store.set("k", "y" * 20)
        with pytest.raises(StorageCapacityError):
            await store.set("k", "z" * 21)
        return await store.get("k")

    assert asyncio.run(run()) == "y" * 20


def test_file_store_quota_counts_other_keys(tmp_path):
    store = JsonFileStore(tmp_path / "store", quota=30)

    async def run():
        await store.set("a", "x" * 20)
        with pytest.raises(StorageCapacityError):
            await store.set("b", "x" * 11)
        await store.set("b", "x" * 10)

    asyncio.run(run())


def test_file_store_rejects_bad_keys(tmp_path):
    store = JsonFileStore(tmp_path / "store")
    with pytest.raises(ValueError):
        asyncio.run(store.set("../escape", "{}"))


def test_memory_store_quota():
    store = MemoryStore(quota=10)

    async def run():
        await store.set("a", "12345")
        with pytest.raises(StorageCapacityError):
            await store.set("b", "123456")
        await store.set("b", "12345")
        return await store.list_keys()

    assert asyncio.run(run()) == ["a", "b"]
