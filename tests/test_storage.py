"""
Tests for the local cart store and key-value backends
"""

import json

import pytest

from cartsync.cart.storage import LocalCartStore
from cartsync.db import FileKeyValueStore, StorageKeys, get_key_value_store
from cartsync.errors import LocalStoreError

from conftest import make_item


class TestLocalCartStore:
    """Tests for LocalCartStore."""

    @pytest.mark.asyncio
    async def test_save_load_round_trip(self, store):
        items = [make_item(), make_item(item_id="p2-nocolor-nosize-1", product_id="p2", color=None, size=None)]

        await store.save(items)
        loaded = await store.load()

        assert loaded == items

    @pytest.mark.asyncio
    async def test_missing_snapshot_is_empty(self, store):
        assert await store.load() == []

    @pytest.mark.asyncio
    async def test_corrupt_json_is_empty(self, store, kv):
        kv.data[StorageKeys.CART] = "{not json"
        assert await store.load() == []

    @pytest.mark.asyncio
    async def test_non_list_is_empty(self, store, kv):
        kv.data[StorageKeys.CART] = json.dumps({"id": "x"})
        assert await store.load() == []

    @pytest.mark.asyncio
    async def test_invalid_entry_is_empty(self, store, kv):
        kv.data[StorageKeys.CART] = json.dumps([{"id": "x"}])
        assert await store.load() == []

    @pytest.mark.asyncio
    async def test_read_failure_is_empty(self, store, kv):
        kv.fail_reads = True
        assert await store.load() == []

    @pytest.mark.asyncio
    async def test_save_failure_raises(self, store, kv):
        kv.fail_writes = True
        with pytest.raises(LocalStoreError):
            await store.save([make_item()])

    @pytest.mark.asyncio
    async def test_clear(self, store, kv):
        await store.save([make_item()])
        await store.clear()
        assert StorageKeys.CART not in kv.data

    @pytest.mark.asyncio
    async def test_raw_values_and_cart_keys(self, store, kv):
        await store.save_raw(StorageKeys.SYNC_QUEUE, [{"type": "remove"}])
        kv.data["unrelated"] = "1"
        await store.save([])

        assert await store.load_raw(StorageKeys.SYNC_QUEUE) == [{"type": "remove"}]
        assert sorted(await store.cart_keys()) == ["cart", "cart_sync_queue"]

        await store.delete_raw(StorageKeys.SYNC_QUEUE)
        assert await store.load_raw(StorageKeys.SYNC_QUEUE) is None


class TestFileKeyValueStore:
    """Tests for the on-device file backend."""

    @pytest.mark.asyncio
    async def test_set_get_delete(self, tmp_path):
        kv = FileKeyValueStore(tmp_path / "store")

        assert await kv.get("cart") is None
        await kv.set("cart", "[]")
        assert await kv.get("cart") == "[]"
        assert await kv.delete("cart") == 1
        assert await kv.delete("cart") == 0

    @pytest.mark.asyncio
    async def test_keys_are_unquoted_and_filtered(self, tmp_path):
        kv = FileKeyValueStore(tmp_path)
        await kv.set("cart", "[]")
        await kv.set("user/prefs", "{}")

        assert await kv.keys() == ["cart", "user/prefs"]
        assert await kv.keys("cart*") == ["cart"]
        assert not list(tmp_path.glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_backs_local_cart_store(self, tmp_path):
        store = LocalCartStore(FileKeyValueStore(tmp_path))
        await store.save([make_item(quantity=2)])

        loaded = await store.load()
        assert loaded[0].quantity == 2


class TestBackendSelection:
    """Tests for get_key_value_store."""

    def test_file_backend(self):
        assert isinstance(get_key_value_store("file"), FileKeyValueStore)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            get_key_value_store("sqlite")

    def test_redis_requires_credentials(self, monkeypatch):
        from cartsync import config, db

        monkeypatch.setattr(config, "UPSTASH_REDIS_REST_URL", "")
        monkeypatch.setattr(db, "_redis_client", None)

        with pytest.raises(ValueError):
            get_key_value_store("redis")
