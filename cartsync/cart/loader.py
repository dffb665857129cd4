"""Cart merge/load: reconcile the local snapshot with the remote cart."""
import asyncio
from typing import List, Optional

from cartsync.logging import get_logger, sanitize_id_for_logging

from .gateway import RemoteCartGateway, describe_gateway_error
from .models import CartItem, PriceRule, RemoteCartItem

logger = get_logger(__name__)


def merge_carts(local: List[CartItem], remote: List[CartItem]) -> List[CartItem]:
    """
    Server wins once it has any lines; an empty remote cart keeps local
    lines so items added before the first sync are not thrown away.
    """
    return list(remote) if remote else list(local)


class CartLoader:
    """Fetches and enriches the remote cart and merges it with local state."""

    def __init__(self, gateway: RemoteCartGateway, identity):
        self.gateway = gateway
        self.identity = identity

    async def _fetch_prices(self, remote_item: RemoteCartItem) -> List[PriceRule]:
        """Tiered prices for one line; [] if the lookup fails."""
        product_id = remote_item.price_lookup_id
        try:
            raw = await self.gateway.fetch_product_prices(product_id)
            return [PriceRule.from_dict(rule) for rule in raw if isinstance(rule, dict)]
        except Exception as e:
            logger.warning(
                f"Could not load prices for product {sanitize_id_for_logging(product_id)}: "
                f"{describe_gateway_error(e)}"
            )
            return []

    async def fetch_remote(self, use_cache: bool = True) -> List[CartItem]:
        """
        Full remote cart with price rules attached.

        Raises:
            GatewayError: If the cart itself cannot be fetched
            ValidationError: If the API returns malformed lines
        """
        payload = await self.gateway.fetch_cart(use_cache=use_cache)
        remote_items = [RemoteCartItem.model_validate(entry) for entry in payload]
        prices = await asyncio.gather(*(self._fetch_prices(item) for item in remote_items))
        return [item.to_cart_item(rules) for item, rules in zip(remote_items, prices)]

    async def reconcile(self, local: List[CartItem], force_sync: bool = False) -> Optional[List[CartItem]]:
        """
        Merged cart, or None when running local-only (anonymous user or remote failure).
        """
        if self.identity.current_user is None:
            logger.debug("Not authenticated, using local cart only")
            return None

        try:
            remote = await self.fetch_remote(use_cache=not force_sync)
        except Exception as e:
            logger.warning(f"Remote cart unavailable, keeping local cart: {describe_gateway_error(e)}")
            return None

        logger.info(f"Remote cart loaded: {len(remote)} items")
        return merge_carts(local, remote)
