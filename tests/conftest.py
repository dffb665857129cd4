"""Pytest configuration and fixtures"""
import fnmatch
import json
import os
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

# Set test environment variables
os.environ.setdefault("CART_API_BASE_URL", "https://api.test")
os.environ.setdefault("FIREBASE_API_KEY", "test_firebase_key")
os.environ.setdefault("CART_STORAGE_BACKEND", "file")

from cartsync.auth.identity import AuthStateListeners
from cartsync.cart.gateway import RemoteCartGateway
from cartsync.cart.models import CartItem
from cartsync.cart.storage import LocalCartStore
from cartsync.cart.sync import CartSync

BASE_URL = "https://api.test"


class FakeKV:
    """In-memory stand-in for the async key-value backends."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.fail_writes = False
        self.fail_reads = False
        self.set_calls = 0

    async def get(self, key):
        if self.fail_reads:
            raise OSError("read failed")
        return self.data.get(key)

    async def set(self, key, value):
        self.set_calls += 1
        if self.fail_writes:
            raise OSError("disk full")
        self.data[key] = value
        return True

    async def delete(self, key):
        if self.fail_writes:
            raise OSError("disk full")
        return 1 if self.data.pop(key, None) is not None else 0

    async def keys(self, pattern="*"):
        return [key for key in self.data if fnmatch.fnmatchcase(key, pattern)]


class FakeUser:
    """Signed-in user that hands out numbered tokens."""

    def __init__(self, uid: str = "user-123"):
        self.uid = uid
        self.refreshes = 0
        self.token_calls: List[bool] = []

    async def get_id_token(self, force_refresh: bool = False) -> str:
        self.token_calls.append(force_refresh)
        if force_refresh:
            self.refreshes += 1
        return f"token-{self.refreshes}"


class FakeIdentity:
    """Identity provider whose user the test switches by hand."""

    def __init__(self, user: Optional[FakeUser] = None):
        self._user = user
        self._listeners = AuthStateListeners()

    @property
    def current_user(self):
        return self._user

    def on_auth_state_changed(self, callback):
        unsubscribe = self._listeners.add(callback)
        callback(self._user)
        return unsubscribe

    def set_user(self, user: Optional[FakeUser]) -> None:
        self._user = user
        self._listeners.emit(user)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


Handler = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class MockApi:
    """
    Routes requests by (method, path) for httpx.MockTransport.

    A route is a response, a callable, or a list consumed one per call
    (the last entry repeats). Unrouted requests get a 404.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Union[Handler, List[Handler]]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, path: str, handler: Union[Handler, List[Handler]]) -> None:
        self.routes[(method.upper(), path)] = handler

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "not found"})
        if isinstance(handler, list):
            handler = handler.pop(0) if len(handler) > 1 else handler[0]
        if callable(handler) and not isinstance(handler, httpx.Response):
            return handler(request)
        return handler

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content) if request.content else None


def make_item(
    item_id: str = "p1-red-M-1700000000000",
    product_id: str = "p1",
    quantity: int = 1,
    price: str = "1000",
    provider: Optional[str] = "Acme",
    color: Optional[str] = "red",
    size: Optional[str] = "M",
    checked: bool = False,
) -> CartItem:
    return CartItem(
        id=item_id,
        product_id=product_id,
        quantity=quantity,
        price_snapshot=Decimal(price),
        product_name_snapshot=f"Product {product_id}",
        image_url_snapshot=f"https://img.test/{product_id}.jpg",
        provider_name_snapshot=provider,
        color_snapshot=color,
        size_snapshot=size,
        is_checked=checked,
        created_at="2024-01-01T00:00:00+00:00",
    )


def remote_line(item_id="srv-1", product_id="p1", quantity=2, price="1000", checked=None, **extra) -> dict:
    line = {
        "id": item_id,
        "productId": product_id,
        "quantity": quantity,
        "priceSnapshot": price,
        "colorSnapshot": "red",
        "sizeSnapshot": "M",
        "productNameSnapshot": f"Product {product_id}",
        "imageUrlSnapshot": None,
        "providerNameSnapshot": "Acme",
    }
    if checked is not None:
        line["isChecked"] = checked
    line.update(extra)
    return line


@pytest.fixture
def kv():
    return FakeKV()


@pytest.fixture
def store(kv):
    return LocalCartStore(kv)


@pytest.fixture
def user():
    return FakeUser()


@pytest.fixture
def identity(user):
    """Identity provider with a signed-in user."""
    return FakeIdentity(user)


@pytest.fixture
def anonymous_identity():
    return FakeIdentity(None)


@pytest.fixture
def api():
    return MockApi()


@pytest.fixture
def make_gateway(api):
    """Build a gateway on the mock transport; cache and throttle off unless asked."""
    def _make(identity, cache_ttl: float = 0, throttle_interval: float = 0) -> RemoteCartGateway:
        client = httpx.AsyncClient(transport=api.transport())
        return RemoteCartGateway(
            identity,
            base_url=BASE_URL,
            client=client,
            cache_ttl=cache_ttl,
            throttle_interval=throttle_interval,
        )
    return _make


@pytest.fixture
def gateway(make_gateway, identity):
    return make_gateway(identity)


@pytest.fixture
def sync(gateway, identity, store):
    return CartSync(gateway, identity, store, max_retries=3)
