"""
cartsync - local-first cart synchronization engine

This package contains:
- config: environment-driven settings
- db: storage keys and key-value backends (Upstash Redis, local files)
- auth: identity providers (Firebase Authentication)
- cart: cart models, local store, remote gateway, sync, and controller

Note: Imports are lazy so that importing cartsync does not read
configuration or open clients.
"""

__version__ = "1.0.0"

__all__ = [
    "CartController",
    "FirebaseAuth",
    "build_controller",
    "get_key_value_store",
]


def __getattr__(name):
    """Lazy attribute access."""
    if name == "CartController":
        from cartsync.cart.service import CartController
        return CartController
    elif name == "build_controller":
        from cartsync.cart.service import build_controller
        return build_controller
    elif name == "FirebaseAuth":
        from cartsync.auth.firebase import FirebaseAuth
        return FirebaseAuth
    elif name == "get_key_value_store":
        from cartsync.db import get_key_value_store
        return get_key_value_store
    raise AttributeError(f"module 'cartsync' has no attribute '{name}'")
