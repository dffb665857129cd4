"""Cart controller: local-first cart state with background remote sync."""
import asyncio
from dataclasses import replace
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from cartsync.db import get_key_value_store
from cartsync.errors import ERROR_INVALID_PRICE, ERROR_INVALID_PRODUCT, ERROR_INVALID_QUANTITY
from cartsync.logging import get_logger, sanitize_id_for_logging
from cartsync.money import total

from .gateway import RemoteCartGateway
from .loader import CartLoader
from .models import UNKNOWN_PROVIDER, CartItem, make_item_id
from .storage import LocalCartStore
from .sync import CartSync

logger = get_logger(__name__)

CartListener = Callable[[List[CartItem]], None]


class AppState(str, Enum):
    """Foreground state reported by the host app."""
    ACTIVE = "active"
    BACKGROUND = "background"
    INACTIVE = "inactive"


def _validate_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValueError(ERROR_INVALID_QUANTITY)


def _validate_new_line(product_id, quantity, price) -> None:
    if not product_id or not isinstance(product_id, str):
        raise ValueError(ERROR_INVALID_PRODUCT)
    _validate_quantity(quantity)
    if isinstance(price, bool) or not isinstance(price, (int, float, Decimal)) or price < 0:
        raise ValueError(ERROR_INVALID_PRICE)


class CartController:
    """
    Owns the cart state for one app process.

    Every mutation is applied and persisted locally before returning; the
    matching remote call runs as a detached task. Mutations return True/False
    and never raise.

    Usage:
        controller = CartController(store, gateway, identity)
        await controller.start()
        await controller.add_to_cart("p1", 2, Decimal("1000"), "Blouse", color="red", size="M")
        controller.get_total_price()
        await controller.aclose()
    """

    def __init__(
        self,
        store: LocalCartStore,
        gateway: RemoteCartGateway,
        identity,
        sync: Optional[CartSync] = None,
        loader: Optional[CartLoader] = None,
    ):
        self.store = store
        self.gateway = gateway
        self.identity = identity
        self.sync = sync or CartSync(gateway, identity, store)
        self.loader = loader or CartLoader(gateway, identity)

        self._items: List[CartItem] = []
        self._loading = True
        self._user = None
        self._app_state = AppState.ACTIVE
        self._lock = asyncio.Lock()
        self._background: Set[asyncio.Task] = set()
        self._listeners: List[CartListener] = []
        self._unsubscribe_identity: Optional[Callable[[], None]] = None

    # =========================================================================
    # State
    # =========================================================================

    @property
    def items(self) -> List[CartItem]:
        return list(self._items)

    @property
    def loading(self) -> bool:
        """True until the local snapshot has been read once."""
        return self._loading

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None

    def subscribe(self, listener: CartListener) -> Callable[[], None]:
        """Call `listener` with the item list after every state change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_items(self, items: List[CartItem]) -> None:
        self._items = list(items)
        for listener in list(self._listeners):
            try:
                listener(self.items)
            except Exception:
                logger.exception("Cart listener failed")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Track identity changes and load the cart."""
        self._user = self.identity.current_user
        self._unsubscribe_identity = self.identity.on_auth_state_changed(self._on_auth_state_changed)
        await self.load_cart()

    def _on_auth_state_changed(self, user) -> None:
        previous = self._user
        self._user = user

        if previous is None and user is not None:
            logger.info(f"User {sanitize_id_for_logging(getattr(user, 'uid', None))} signed in, syncing cart")
            self.gateway.clear_cache()
            self._spawn(self.load_cart, "cart load")
        elif previous is not None and user is None:
            # Local cart stays visible after sign-out
            logger.info("User signed out, keeping local cart")
            self.gateway.clear_cache()
        elif previous is not None and getattr(previous, "uid", None) != getattr(user, "uid", None):
            logger.info("Signed-in user changed, reloading cart")
            self.gateway.clear_cache()
            self._spawn(lambda: self.load_cart(force_sync=True), "cart load")

    def handle_app_state_change(self, state: Union[AppState, str]) -> None:
        """Resync pending operations when the app comes back to the foreground."""
        state = AppState(state)
        previous = self._app_state
        self._app_state = state
        if previous != AppState.ACTIVE and state == AppState.ACTIVE and self.is_authenticated:
            logger.info("App active again, replaying pending cart operations")
            self._spawn(self.sync.trigger_sync, "foreground resync")

    def _spawn(self, factory: Callable[[], Awaitable], label: str) -> Optional[asyncio.Task]:
        """Run a coroutine as a detached task tracked until it finishes."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, {label} not started")
            return None

        task = loop.create_task(factory())
        self._background.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._background.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.warning(f"Background {label} failed: {type(error).__name__}: {error}")

        task.add_done_callback(_done)
        return task

    async def wait_for_background(self) -> None:
        """Wait until all detached sync tasks (and tasks they started) finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        if self._unsubscribe_identity is not None:
            self._unsubscribe_identity()
            self._unsubscribe_identity = None
        await self.wait_for_background()

    # =========================================================================
    # Load
    # =========================================================================

    async def load_cart(self, force_sync: bool = False) -> bool:
        """Show the local cart immediately, then merge the remote cart when signed in."""
        try:
            async with self._lock:
                local = await self.store.load()
                self._set_items(local)
                self._loading = False

            merged = await self.loader.reconcile(local, force_sync=force_sync)
            if merged is None:
                return True

            async with self._lock:
                # Empty remote: keep what was committed during the fetch
                if merged != local:
                    await self.store.save(merged)
                    self._set_items(merged)
                    logger.info(f"Cart synced with remote: {len(merged)} items")

            self._spawn(self.sync.trigger_sync, "outbox drain")
            return True
        except Exception as e:
            logger.error(f"Failed to load cart: {e}")
            self._loading = False
            return False

    # =========================================================================
    # Mutations
    # =========================================================================

    async def add_to_cart(
        self,
        product_id: str,
        quantity: int,
        price: Union[int, float, Decimal],
        product_name: str,
        image_url: Optional[str] = None,
        provider_name: Optional[str] = None,
        color: Optional[str] = None,
        size: Optional[str] = None,
    ) -> bool:
        """Add a line, or increase the quantity of the same product/color/size line."""
        try:
            _validate_new_line(product_id, quantity, price)
        except ValueError as e:
            logger.warning(f"Rejected add_to_cart: {e}")
            return False

        try:
            async with self._lock:
                items = [replace(item) for item in self._items]
                line = next((item for item in items if item.matches_variant(product_id, color, size)), None)
                if line is not None:
                    line.quantity += quantity
                else:
                    line = CartItem(
                        id=make_item_id(product_id, color, size),
                        product_id=product_id,
                        quantity=quantity,
                        price_snapshot=price,
                        product_name_snapshot=product_name or "",
                        image_url_snapshot=image_url,
                        provider_name_snapshot=provider_name,
                        color_snapshot=color,
                        size_snapshot=size,
                        is_checked=False,
                    )
                    items.append(line)

                await self.store.save(items)
                self._set_items(items)
        except Exception as e:
            logger.error(f"Failed to add to cart: {e}")
            return False

        if self.is_authenticated:
            added = replace(line)
            self._spawn(lambda: self.sync.sync_add(added, quantity), "add sync")
        return True

    async def update_quantity(self, item_id: str, new_quantity: int) -> bool:
        try:
            _validate_quantity(new_quantity)
        except ValueError as e:
            logger.warning(f"Rejected update_quantity: {e}")
            return False

        try:
            async with self._lock:
                items = list(self._items)
                index = next((i for i, item in enumerate(items) if item.id == item_id), None)
                if index is None:
                    logger.warning(f"update_quantity: item {sanitize_id_for_logging(item_id)} not in cart")
                    return False
                items[index] = replace(items[index], quantity=new_quantity)

                await self.store.save(items)
                self._set_items(items)
        except Exception as e:
            logger.error(f"Failed to update quantity: {e}")
            return False

        if self.is_authenticated:
            self._spawn(lambda: self.sync.sync_update_quantity(item_id, new_quantity), "quantity sync")
        return True

    async def toggle_item_check(self, item_id: str) -> bool:
        try:
            async with self._lock:
                items = list(self._items)
                index = next((i for i, item in enumerate(items) if item.id == item_id), None)
                if index is None:
                    logger.warning(f"toggle_item_check: item {sanitize_id_for_logging(item_id)} not in cart")
                    return False
                is_checked = not items[index].is_checked
                items[index] = replace(items[index], is_checked=is_checked)

                await self.store.save(items)
                self._set_items(items)
        except Exception as e:
            logger.error(f"Failed to toggle item check: {e}")
            return False

        if self.is_authenticated:
            self._spawn(lambda: self.sync.sync_toggle_check(item_id, is_checked), "check sync")
        return True

    async def remove_item(self, item_id: str) -> bool:
        return await self.remove_multiple_items([item_id])

    async def remove_multiple_items(self, item_ids: Iterable[str]) -> bool:
        """Drop several lines with a single local write."""
        ids = set(item_ids)
        try:
            async with self._lock:
                removed = [item.id for item in self._items if item.id in ids]
                if not removed:
                    return True
                items = [item for item in self._items if item.id not in ids]

                await self.store.save(items)
                self._set_items(items)
        except Exception as e:
            logger.error(f"Failed to remove items: {e}")
            return False

        if self.is_authenticated:
            for removed_id in removed:
                self._spawn(lambda removed_id=removed_id: self.sync.sync_remove(removed_id), "remove sync")
        return True

    async def remove_ordered_items(self, order_items: Iterable[Union[CartItem, str]]) -> bool:
        """Remove the lines that went into a successfully placed order."""
        ids = [item.id if isinstance(item, CartItem) else item for item in order_items]
        return await self.remove_multiple_items(ids)

    async def clear_cart(self) -> bool:
        """Empty the local cart. The remote cart is left alone."""
        try:
            async with self._lock:
                await self.store.clear()
                self._set_items([])
            return True
        except Exception as e:
            logger.error(f"Failed to clear cart: {e}")
            return False

    # =========================================================================
    # Queries
    # =========================================================================

    def get_total_items(self) -> int:
        """Number of distinct lines, not summed quantities."""
        return len(self._items)

    def get_total_price(self) -> Decimal:
        """Snapshot price times quantity over the checked lines."""
        return total(item.line_total for item in self._items if item.is_checked)

    def get_grouped_items(self) -> Dict[str, List[CartItem]]:
        """Lines grouped by provider name, in cart order."""
        groups: Dict[str, List[CartItem]] = {}
        for item in self._items:
            groups.setdefault(item.provider_name_snapshot or UNKNOWN_PROVIDER, []).append(item)
        return groups

    @staticmethod
    def get_provider_total(items: Iterable[CartItem]) -> Decimal:
        """Tiered subtotal of the checked lines of one provider group."""
        return total(item.subtotal() for item in items if item.is_checked)


def build_controller(identity, kv=None, base_url: Optional[str] = None) -> CartController:
    """Wire a controller from configuration."""
    store = LocalCartStore(kv if kv is not None else get_key_value_store())
    gateway = RemoteCartGateway(identity, base_url=base_url)
    return CartController(store, gateway, identity)
