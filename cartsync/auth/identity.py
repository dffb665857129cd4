"""Identity provider interface consumed by the cart engine."""
from typing import Callable, List, Optional, Protocol

from cartsync.logging import get_logger

logger = get_logger(__name__)


class IdentityUser(Protocol):
    """An authenticated user able to issue bearer tokens."""

    uid: str

    async def get_id_token(self, force_refresh: bool = False) -> str:
        ...


AuthStateCallback = Callable[[Optional[IdentityUser]], None]


class IdentityProvider(Protocol):
    """Emits the current user (or None) on subscribe and on every change."""

    @property
    def current_user(self) -> Optional[IdentityUser]:
        ...

    def on_auth_state_changed(self, callback: AuthStateCallback) -> Callable[[], None]:
        ...


class AuthStateListeners:
    """Callback registry shared by identity provider implementations."""

    def __init__(self) -> None:
        self._callbacks: List[AuthStateCallback] = []

    def add(self, callback: AuthStateCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def emit(self, user: Optional[IdentityUser]) -> None:
        for callback in list(self._callbacks):
            try:
                callback(user)
            except Exception:
                logger.exception("Auth state listener failed")

    def __len__(self) -> int:
        return len(self._callbacks)
