"""Local (on-device) persistence for the cart snapshot."""
import json
from typing import Any, List, Optional

from cartsync.db import StorageKeys
from cartsync.errors import ERROR_CORRUPT_CART, ERROR_LOCAL_STORE_UNAVAILABLE, LocalStoreError
from cartsync.logging import get_logger

from .models import CartItem

logger = get_logger(__name__)


class LocalCartStore:
    """
    Persists the cart as a JSON array under a single key.

    `kv` is any async key-value client with get/set/delete/keys
    (Upstash Redis or FileKeyValueStore).
    """

    def __init__(self, kv, key: str = StorageKeys.CART):
        self.kv = kv
        self.key = key

    async def load(self) -> List[CartItem]:
        """Return the last saved cart, or [] when missing or corrupt."""
        try:
            data = await self.kv.get(self.key)
        except Exception as e:
            logger.error(f"Failed to read local cart: {e}")
            return []

        if not data:
            return []

        try:
            raw = json.loads(data)
            if not isinstance(raw, list):
                raise TypeError(f"expected list, got {type(raw).__name__}")
            return [CartItem.from_dict(entry) for entry in raw]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"{ERROR_CORRUPT_CART}, treating as empty: {e}")
            return []

    async def save(self, items: List[CartItem]) -> None:
        """Overwrite the stored snapshot."""
        try:
            payload = json.dumps([item.to_dict() for item in items])
            await self.kv.set(self.key, payload)
        except Exception as e:
            logger.error(f"Failed to save local cart: {e}")
            raise LocalStoreError(f"{ERROR_LOCAL_STORE_UNAVAILABLE}: {e}") from e

    async def clear(self) -> None:
        try:
            await self.kv.delete(self.key)
        except Exception as e:
            logger.error(f"Failed to clear local cart: {e}")
            raise LocalStoreError(f"{ERROR_LOCAL_STORE_UNAVAILABLE}: {e}") from e

    async def load_raw(self, key: str) -> Optional[Any]:
        """Decoded JSON stored under another key, None when missing or corrupt."""
        try:
            data = await self.kv.get(key)
        except Exception as e:
            logger.error(f"Failed to read {key}: {e}")
            return None
        if not data:
            return None
        try:
            return json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning(f"Corrupted data under {key}: {e}")
            return None

    async def save_raw(self, key: str, value: Any) -> None:
        try:
            await self.kv.set(key, json.dumps(value))
        except Exception as e:
            logger.error(f"Failed to save {key}: {e}")
            raise LocalStoreError(f"{ERROR_LOCAL_STORE_UNAVAILABLE}: {e}") from e

    async def delete_raw(self, key: str) -> None:
        try:
            await self.kv.delete(key)
        except Exception as e:
            logger.error(f"Failed to delete {key}: {e}")
            raise LocalStoreError(f"{ERROR_LOCAL_STORE_UNAVAILABLE}: {e}") from e

    async def cart_keys(self) -> List[str]:
        """All stored keys that belong to the cart engine."""
        try:
            keys = await self.kv.keys("*")
        except Exception as e:
            logger.error(f"Failed to list keys: {e}")
            return []
        return [key for key in keys if StorageKeys.is_cart_key(key)]
