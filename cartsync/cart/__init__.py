"""Cart package: models, local store, gateway, sync, and controller."""
from .diagnostics import export_debug_data
from .gateway import RemoteCartGateway
from .loader import CartLoader, merge_carts
from .models import CartItem, PriceRule, RemoteCartItem
from .service import AppState, CartController, build_controller
from .storage import LocalCartStore
from .sync import CartSync, SyncOperationType, SyncStatus

__all__ = [
    "AppState",
    "CartController",
    "CartItem",
    "CartLoader",
    "CartSync",
    "LocalCartStore",
    "PriceRule",
    "RemoteCartGateway",
    "RemoteCartItem",
    "SyncOperationType",
    "SyncStatus",
    "build_controller",
    "export_debug_data",
    "merge_carts",
]
