"""
Background cart sync operations.

Each operation pushes one local mutation to the cart API. The controller
fires them without awaiting; the outcome only shows up in the logs. An
operation whose call fails is written to a durable outbox that
`trigger_sync()` replays later (app foreground, cart reload).
"""

import asyncio
import time
import uuid
from enum import Enum
from typing import List, Optional

from cartsync import config
from cartsync.db import StorageKeys
from cartsync.errors import GatewayHTTPError, LocalStoreError
from cartsync.logging import get_logger, sanitize_id_for_logging

from .gateway import RemoteCartGateway, describe_gateway_error
from .models import CartItem, CreateCartItemRequest
from .storage import LocalCartStore

logger = get_logger(__name__)


class SyncStatus(str, Enum):
    """Outcome of one sync operation."""
    SYNCED = "synced"
    SKIPPED = "skipped"  # no authenticated user
    FAILED = "failed"


class SyncOperationType(str, Enum):
    ADD = "add"
    UPDATE_QUANTITY = "update_quantity"
    TOGGLE_CHECK = "toggle_check"
    REMOVE = "remove"


class CartSync:
    """
    Sync operations plus the outbox of failed ones.

    Usage:
        sync = CartSync(gateway, identity, store)
        status = await sync.sync_update_quantity(item_id, 3)
        await sync.trigger_sync()
    """

    def __init__(
        self,
        gateway: RemoteCartGateway,
        identity,
        store: LocalCartStore,
        max_retries: Optional[int] = None,
    ):
        self.gateway = gateway
        self.identity = identity
        self.store = store
        self.max_retries = config.CART_SYNC_MAX_RETRIES if max_retries is None else max_retries
        self._queue_lock = asyncio.Lock()
        self._draining = False

    def is_authenticated(self) -> bool:
        return self.identity.current_user is not None

    # =========================================================================
    # Operations
    # =========================================================================

    async def sync_add(self, item: CartItem, quantity: Optional[int] = None) -> SyncStatus:
        """POST the line's snapshots; `quantity` is the amount just added."""
        payload = CreateCartItemRequest.from_item(item, quantity).to_payload()
        return await self._sync(SyncOperationType.ADD, payload)

    async def sync_update_quantity(self, item_id: str, quantity: int) -> SyncStatus:
        return await self._sync(SyncOperationType.UPDATE_QUANTITY, {"itemId": item_id, "quantity": quantity})

    async def sync_toggle_check(self, item_id: str, is_checked: bool) -> SyncStatus:
        return await self._sync(SyncOperationType.TOGGLE_CHECK, {"itemId": item_id, "isChecked": is_checked})

    async def sync_remove(self, item_id: str) -> SyncStatus:
        return await self._sync(SyncOperationType.REMOVE, {"itemId": item_id})

    async def _sync(self, op_type: SyncOperationType, data: dict) -> SyncStatus:
        if not self.is_authenticated():
            logger.debug(f"Not authenticated, skipping {op_type.value} sync")
            return SyncStatus.SKIPPED

        status = await self._perform(op_type, data)
        if status == SyncStatus.FAILED:
            await self._enqueue(op_type, data)
        return status

    async def _perform(self, op_type: SyncOperationType, data: dict) -> SyncStatus:
        """One gateway call for the operation. Never raises."""
        item_id = data.get("itemId")
        try:
            if op_type == SyncOperationType.ADD:
                result = await self.gateway.create_item(data)
                remote_id = result.get("id") if isinstance(result, dict) else None
                logger.info(f"Cart item synced: {sanitize_id_for_logging(remote_id)}")
            elif op_type == SyncOperationType.UPDATE_QUANTITY:
                await self.gateway.patch_quantity(item_id, data["quantity"])
                logger.info(f"Quantity synced: {sanitize_id_for_logging(item_id)}")
            elif op_type == SyncOperationType.TOGGLE_CHECK:
                await self.gateway.patch_checked(item_id, data["isChecked"])
                logger.info(f"Check state synced: {sanitize_id_for_logging(item_id)}")
            elif op_type == SyncOperationType.REMOVE:
                await self.gateway.delete_item(item_id)
                logger.info(f"Item removal synced: {sanitize_id_for_logging(item_id)}")
            return SyncStatus.SYNCED
        except GatewayHTTPError as e:
            if e.status_code == 404 and op_type != SyncOperationType.ADD:
                # Line is gone on the server; nothing left to apply
                logger.info(f"Item {sanitize_id_for_logging(item_id)} not found remotely, dropping {op_type.value}")
                return SyncStatus.SYNCED
            logger.warning(f"Sync {op_type.value} failed: {describe_gateway_error(e)}")
            return SyncStatus.FAILED
        except Exception as e:
            logger.warning(f"Sync {op_type.value} failed: {describe_gateway_error(e)}")
            return SyncStatus.FAILED

    # =========================================================================
    # Outbox
    # =========================================================================

    async def pending_operations(self) -> List[dict]:
        queue = await self.store.load_raw(StorageKeys.SYNC_QUEUE)
        if not isinstance(queue, list):
            return []
        return [op for op in queue if isinstance(op, dict)]

    async def _enqueue(self, op_type: SyncOperationType, data: dict) -> None:
        entry = {
            "id": uuid.uuid4().hex,
            "type": op_type.value,
            "data": data,
            "timestamp": int(time.time() * 1000),
            "retries": 0,
        }
        async with self._queue_lock:
            try:
                queue = await self.pending_operations()
                queue.append(entry)
                await self.store.save_raw(StorageKeys.SYNC_QUEUE, queue)
                logger.info(f"Queued {op_type.value} for later sync ({len(queue)} pending)")
            except LocalStoreError as e:
                logger.error(f"Could not queue {op_type.value}: {e}")

    async def trigger_sync(self) -> int:
        """
        Replay the outbox once.

        Returns:
            Number of operations still pending afterwards
        """
        if not self.is_authenticated():
            return 0
        if self._draining:
            logger.debug("Outbox drain already running")
            return 0

        self._draining = True
        try:
            snapshot = await self.pending_operations()
            if not snapshot:
                return 0

            logger.info(f"Replaying {len(snapshot)} pending cart operations")
            remaining = []
            for op in snapshot:
                try:
                    op_type = SyncOperationType(op.get("type"))
                except ValueError:
                    logger.warning(f"Dropping unknown queued operation: {op.get('type')}")
                    continue

                status = await self._perform(op_type, op.get("data") or {})
                if status == SyncStatus.SYNCED:
                    continue

                op["retries"] = int(op.get("retries", 0)) + 1
                if op["retries"] >= self.max_retries:
                    logger.warning(f"Dropping {op_type.value} after {op['retries']} retries")
                    continue
                remaining.append(op)

            drained_ids = {op.get("id") for op in snapshot}
            async with self._queue_lock:
                current = await self.pending_operations()
                # Keep operations queued while the drain was running
                queue = remaining + [op for op in current if op.get("id") not in drained_ids]
                await self.store.save_raw(StorageKeys.SYNC_QUEUE, queue)
            return len(queue)
        except LocalStoreError as e:
            logger.error(f"Outbox drain failed: {e}")
            return 0
        finally:
            self._draining = False

    async def clear_queue(self) -> bool:
        async with self._queue_lock:
            try:
                await self.store.delete_raw(StorageKeys.SYNC_QUEUE)
                return True
            except LocalStoreError as e:
                logger.error(f"Could not clear sync queue: {e}")
                return False
