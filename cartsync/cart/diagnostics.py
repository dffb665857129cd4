"""Cart debugging helpers."""
from datetime import datetime, timezone
from typing import Any, Dict

from cartsync.db import StorageKeys
from cartsync.logging import get_logger

from .storage import LocalCartStore
from .sync import CartSync

logger = get_logger(__name__)


async def export_debug_data(store: LocalCartStore, sync: CartSync) -> Dict[str, Any]:
    """
    Snapshot of everything the cart engine keeps on the device.

    Returns:
        Dict with timestamp, local_cart (raw stored JSON), sync_queue and
        the storage keys that belong to the cart engine
    """
    local_cart = await store.load_raw(StorageKeys.CART)
    sync_queue = await sync.pending_operations()
    keys = await store.cart_keys()

    logger.info(f"Cart debug export: {len(local_cart or [])} items, {len(sync_queue)} queued operations")
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "local_cart": local_cart if isinstance(local_cart, list) else [],
        "sync_queue": sync_queue,
        "keys": keys,
    }
