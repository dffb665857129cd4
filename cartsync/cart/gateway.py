"""
Remote Cart Gateway - thin httpx wrapper over the cart REST API.

- Bearer token from the identity provider on every request
- One forced token refresh + retry on HTTP 401
- Short-lived GET cache and per-call throttle to dampen duplicate calls
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from cartsync import config
from cartsync.errors import (
    ERROR_REMOTE_UNREACHABLE,
    AuthorizationExpiredError,
    GatewayError,
    GatewayHTTPError,
    GatewayTransportError,
)
from cartsync.logging import get_logger, redact_url, sanitize_string_for_logging

logger = get_logger(__name__)

CART_PATH = "/cart"
PRODUCT_PRICES_PATH = "/product-prices/product"


def _item_path(item_id: str, suffix: str = "") -> str:
    return f"{CART_PATH}/{quote(str(item_id), safe='')}{suffix}"


class RemoteCartGateway:
    """
    One method per REST action the cart engine needs.

    Every method returns the decoded JSON body (None for empty bodies) or
    raises GatewayTransportError / GatewayHTTPError / AuthorizationExpiredError.
    The GET cache only dampens bursts of identical calls; callers that need
    fresh data pass use_cache=False.
    """

    def __init__(
        self,
        identity,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache_ttl: Optional[float] = None,
        throttle_interval: Optional[float] = None,
    ):
        self.identity = identity
        self.base_url = (base_url or config.CART_API_BASE_URL).rstrip("/")
        self.cache_ttl = config.CART_CACHE_TTL if cache_ttl is None else cache_ttl
        self.throttle_interval = (
            config.CART_THROTTLE_INTERVAL if throttle_interval is None else throttle_interval
        )
        self._client = client
        self._owns_client = client is None
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._next_allowed: Dict[str, float] = {}
        self._clock = time.monotonic
        self._sleep = asyncio.sleep

    @property
    def client(self) -> httpx.AsyncClient:
        """HTTP client (lazy initialization)."""
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    # =========================================================================
    # Cart operations
    # =========================================================================

    async def fetch_cart(self, use_cache: bool = True) -> List[dict]:
        payload = await self.request("GET", CART_PATH, use_cache=use_cache)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise GatewayError(f"Unexpected cart payload: {type(payload).__name__}")
        return payload

    async def create_item(self, payload: dict) -> Any:
        return await self.request("POST", CART_PATH, json=payload)

    async def patch_quantity(self, item_id: str, quantity: int) -> Any:
        return await self.request("PATCH", _item_path(item_id), json={"quantity": quantity})

    async def patch_checked(self, item_id: str, is_checked: bool) -> Any:
        return await self.request("PATCH", _item_path(item_id, "/check"), json={"isChecked": is_checked})

    async def delete_item(self, item_id: str) -> Any:
        return await self.request("DELETE", _item_path(item_id))

    async def fetch_product_prices(self, product_id: str, use_cache: bool = True) -> List[dict]:
        path = f"{PRODUCT_PRICES_PATH}/{quote(str(product_id), safe='')}"
        payload = await self.request("GET", path, use_cache=use_cache)
        if not isinstance(payload, list):
            return []
        return payload

    # =========================================================================
    # Transport
    # =========================================================================

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        use_cache: bool = True,
    ) -> Any:
        method = method.upper()
        url = f"{self.base_url}{path}"
        key = f"{method} {url}"

        if method == "GET" and use_cache:
            cached = self._cache_get(key)
            if cached is not None:
                logger.debug(f"Cache hit: {key}")
                return cached

        await self._throttle(key)

        response, identity_bearing = await self._send(method, url, json, force_refresh=False)

        if response.status_code == 401 and identity_bearing:
            logger.info("Token expired, refreshing and retrying once")
            response, _ = await self._send(method, url, json, force_refresh=True)
            if response.status_code == 401:
                raise AuthorizationExpiredError(response.text)

        if not response.is_success:
            body = response.text
            logger.warning(
                f"{method} {path} failed: status={response.status_code}, "
                f"response={sanitize_string_for_logging(body, 200)}"
            )
            raise GatewayHTTPError(response.status_code, body)

        try:
            payload = response.json() if response.content else None
        except ValueError as e:
            raise GatewayError(f"{method} {path}: invalid JSON body") from e

        if method == "GET":
            self._cache[key] = (self._clock() + self.cache_ttl, payload)
        else:
            self._invalidate_cart()

        return payload

    async def _send(
        self,
        method: str,
        url: str,
        json: Any,
        force_refresh: bool,
    ) -> Tuple[httpx.Response, bool]:
        """Make one HTTP call. Returns (response, whether a bearer token was sent)."""
        headers = {"Content-Type": "application/json"}
        user = self.identity.current_user
        token = None
        if user is not None:
            token = await user.get_id_token(force_refresh)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self.client.request(method, url, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Transport error on {method} {redact_url(url)}: {type(e).__name__}: {e}")
            raise GatewayTransportError(f"{ERROR_REMOTE_UNREACHABLE}: {method} {redact_url(url)}: {e}") from e

        return response, bool(token)

    async def _throttle(self, key: str) -> None:
        """Space identical method+URL calls at least throttle_interval apart."""
        if self.throttle_interval <= 0:
            return
        now = self._clock()
        expired = [k for k, at in self._next_allowed.items() if at <= now]
        for k in expired:
            del self._next_allowed[k]
        allowed_at = max(now, self._next_allowed.get(key, now))
        self._next_allowed[key] = allowed_at + self.throttle_interval
        delay = allowed_at - now
        if delay > 0:
            logger.debug(f"Throttling {key} for {delay:.3f}s")
            await self._sleep(delay)

    # =========================================================================
    # Cache
    # =========================================================================

    def _cache_get(self, key: str) -> Any:
        entry = self._cache.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if self._clock() >= expires_at:
            del self._cache[key]
            return None
        return payload

    def _invalidate_cart(self) -> None:
        self._cache.pop(f"GET {self.base_url}{CART_PATH}", None)

    def clear_cache(self) -> None:
        """Drop cached responses (identity changes, forced reloads)."""
        if self._cache:
            logger.debug(f"Clearing {len(self._cache)} cached responses")
        self._cache.clear()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


def describe_gateway_error(error: Exception) -> str:
    """Short description of a gateway failure for log lines."""
    if isinstance(error, GatewayHTTPError):
        return f"HTTP {error.status_code}"
    if isinstance(error, GatewayTransportError):
        return "network unreachable"
    return f"{type(error).__name__}: {sanitize_string_for_logging(str(error), 80)}"
