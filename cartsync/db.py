"""
Storage Module - Key-Value Backends for the Local Cart Store

Provides:
- Upstash Redis async client singleton (shared-device / kiosk deployments)
- File-backed key-value store for on-device persistence
- Key names used by the cart engine

Both backends expose the same async surface: get, set, delete, keys.
"""

import asyncio
import fnmatch
import os
from pathlib import Path
from typing import List, Optional, Union
from urllib.parse import quote, unquote

from upstash_redis.asyncio import Redis as AsyncRedis

from cartsync import config


class StorageKeys:
    """Key names for cart data."""

    # JSON array of CartItem
    CART = "cart"

    # JSON array of pending sync operations
    SYNC_QUEUE = "cart_sync_queue"

    @staticmethod
    def is_cart_key(key: str) -> bool:
        return "cart" in key or "sync" in key


# Singleton instance
_redis_client: Optional[AsyncRedis] = None


def get_redis() -> AsyncRedis:
    """
    Get async Upstash Redis client (singleton).

    Uses standard Upstash env var names:
    - UPSTASH_REDIS_REST_URL
    - UPSTASH_REDIS_REST_TOKEN
    """
    global _redis_client

    if _redis_client is None:
        if not config.UPSTASH_REDIS_REST_URL or not config.UPSTASH_REDIS_REST_TOKEN:
            raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        _redis_client = AsyncRedis(url=config.UPSTASH_REDIS_REST_URL, token=config.UPSTASH_REDIS_REST_TOKEN)

    return _redis_client


class FileKeyValueStore:
    """
    One file per key under a directory.

    Writes go to a temp file first and are moved into place, so a crash
    mid-write leaves the previous value intact.
    """

    def __init__(self, directory: Union[str, os.PathLike]):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def _read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _write(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)

    def _delete(self, key: str) -> int:
        path = self._path(key)
        if path.exists():
            path.unlink()
            return 1
        return 0

    def _keys(self, pattern: str) -> List[str]:
        if not self.directory.exists():
            return []
        names = [unquote(p.stem) for p in self.directory.glob("*.json")]
        return sorted(name for name in names if fnmatch.fnmatchcase(name, pattern))

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: str) -> bool:
        await asyncio.to_thread(self._write, key, value)
        return True

    async def delete(self, key: str) -> int:
        return await asyncio.to_thread(self._delete, key)

    async def keys(self, pattern: str = "*") -> List[str]:
        return await asyncio.to_thread(self._keys, pattern)


def get_key_value_store(backend: Optional[str] = None):
    """Return the key-value backend selected by CART_STORAGE_BACKEND."""
    backend = (backend or config.CART_STORAGE_BACKEND).lower()
    if backend == "redis":
        return get_redis()
    if backend == "file":
        return FileKeyValueStore(config.CART_STORAGE_DIR)
    raise ValueError(f"Unknown CART_STORAGE_BACKEND: {backend}")
