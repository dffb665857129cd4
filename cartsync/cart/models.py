"""Cart models with Decimal-based pricing."""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from cartsync.money import multiply, round_money, to_decimal, to_float

DEFAULT_QUANTITIES = [1, 2, 3, 4, 5]
UNKNOWN_PROVIDER = "Unknown provider"


def make_item_id(
    product_id: str,
    color: Optional[str] = None,
    size: Optional[str] = None,
    created_ms: Optional[int] = None,
) -> str:
    """Local id for a line that the server has not assigned an id to yet."""
    if created_ms is None:
        created_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"{product_id}-{color or 'nocolor'}-{size or 'nosize'}-{created_ms}"


@dataclass
class PriceRule:
    """Tiered price: `price` applies when the line quantity is in `quantity`."""
    quantity: str  # comma-separated ints, as sent by the API
    price: Decimal

    def __post_init__(self):
        self.quantity = "" if self.quantity is None else str(self.quantity)
        self.price = to_decimal(self.price)

    def quantities(self) -> List[int]:
        result = []
        for part in self.quantity.split(","):
            part = part.strip()
            try:
                result.append(int(part))
            except ValueError:
                continue
        return result

    def applies_to(self, quantity: int) -> bool:
        return quantity in self.quantities()

    def to_dict(self) -> dict:
        return {"quantity": self.quantity, "price": str(self.price)}

    @classmethod
    def from_dict(cls, data: dict) -> "PriceRule":
        return cls(quantity=data.get("quantity"), price=to_decimal(data.get("price")))


@dataclass
class CartItem:
    """
    Single line in the cart.

    Snapshot fields are copied from the catalog when the line is created
    and never refreshed afterwards.
    """
    id: str
    product_id: str
    quantity: int
    price_snapshot: Decimal
    product_name_snapshot: str = ""
    image_url_snapshot: Optional[str] = None
    provider_name_snapshot: Optional[str] = None
    color_snapshot: Optional[str] = None
    size_snapshot: Optional[str] = None
    is_checked: bool = False
    created_at: str = ""
    product_prices: Optional[List[PriceRule]] = None  # only after a remote load

    def __post_init__(self):
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()
        self.price_snapshot = to_decimal(self.price_snapshot)

    def matches_variant(self, product_id: str, color: Optional[str], size: Optional[str]) -> bool:
        """Same product with the same color/size selection."""
        return (
            self.product_id == product_id
            and self.color_snapshot == color
            and self.size_snapshot == size
        )

    @property
    def line_total(self) -> Decimal:
        """Snapshot price times quantity."""
        return multiply(self.price_snapshot, self.quantity)

    def applicable_price(self) -> Decimal:
        """Tiered price for the current quantity, falling back to the snapshot."""
        for rule in self.product_prices or []:
            if rule.applies_to(self.quantity):
                return rule.price
        return self.price_snapshot

    def subtotal(self) -> Decimal:
        return round_money(multiply(self.applicable_price(), self.quantity))

    def available_quantities(self) -> List[int]:
        """Quantities the tier rules allow, sorted; a default range without rules."""
        quantities = set()
        for rule in self.product_prices or []:
            quantities.update(rule.quantities())
        return sorted(quantities) if quantities else list(DEFAULT_QUANTITIES)

    def to_dict(self) -> dict:
        """Convert to dictionary for the local store."""
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price_snapshot": str(self.price_snapshot),
            "product_name_snapshot": self.product_name_snapshot,
            "image_url_snapshot": self.image_url_snapshot,
            "provider_name_snapshot": self.provider_name_snapshot,
            "color_snapshot": self.color_snapshot,
            "size_snapshot": self.size_snapshot,
            "is_checked": self.is_checked,
            "created_at": self.created_at,
            "product_prices": (
                [rule.to_dict() for rule in self.product_prices]
                if self.product_prices is not None
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartItem":
        """Create from dictionary. Raises KeyError/ValueError/TypeError on bad data."""
        prices = data.get("product_prices")
        return cls(
            id=str(data["id"]),
            product_id=str(data["product_id"]),
            quantity=int(data["quantity"]),
            price_snapshot=to_decimal(data.get("price_snapshot")),
            product_name_snapshot=data.get("product_name_snapshot") or "",
            image_url_snapshot=data.get("image_url_snapshot"),
            provider_name_snapshot=data.get("provider_name_snapshot"),
            color_snapshot=data.get("color_snapshot"),
            size_snapshot=data.get("size_snapshot"),
            is_checked=bool(data.get("is_checked", False)),
            created_at=data.get("created_at", ""),
            product_prices=[PriceRule.from_dict(p) for p in prices] if prices is not None else None,
        )


# ============================================================
# Remote payloads
# ============================================================

class RemoteProductRef(BaseModel):
    """Product object the API may nest inside a cart line."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[Union[int, str]] = None


class RemoteCartItem(BaseModel):
    """One line of GET /cart."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Union[int, str] = Field(description="Server-assigned line id")
    product_id: Union[int, str] = Field(alias="productId")
    quantity: int
    price_snapshot: Decimal = Field(default=Decimal("0"), alias="priceSnapshot")
    color_snapshot: Optional[str] = Field(default=None, alias="colorSnapshot")
    size_snapshot: Optional[str] = Field(default=None, alias="sizeSnapshot")
    product_name_snapshot: Optional[str] = Field(default=None, alias="productNameSnapshot")
    image_url_snapshot: Optional[str] = Field(default=None, alias="imageUrlSnapshot")
    provider_name_snapshot: Optional[str] = Field(default=None, alias="providerNameSnapshot")
    is_checked: Optional[bool] = Field(default=None, alias="isChecked")
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    product: Optional[RemoteProductRef] = None

    @property
    def price_lookup_id(self) -> str:
        """Product id to query tiered prices with."""
        if self.product is not None and self.product.id is not None:
            return str(self.product.id)
        return str(self.product_id)

    def to_cart_item(self, prices: Optional[List[PriceRule]] = None) -> CartItem:
        return CartItem(
            id=str(self.id),
            product_id=str(self.product_id),
            quantity=self.quantity,
            price_snapshot=self.price_snapshot,
            product_name_snapshot=self.product_name_snapshot or "",
            image_url_snapshot=self.image_url_snapshot,
            provider_name_snapshot=self.provider_name_snapshot,
            color_snapshot=self.color_snapshot,
            size_snapshot=self.size_snapshot,
            is_checked=bool(self.is_checked),
            created_at=self.created_at or "",
            product_prices=list(prices) if prices is not None else [],
        )


class CreateCartItemRequest(BaseModel):
    """Body of POST /cart."""
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="productId")
    quantity: int = Field(ge=1)
    price_snapshot: float = Field(alias="priceSnapshot")
    color_snapshot: Optional[str] = Field(default=None, alias="colorSnapshot")
    size_snapshot: Optional[str] = Field(default=None, alias="sizeSnapshot")
    product_name_snapshot: Optional[str] = Field(default=None, alias="productNameSnapshot")
    image_url_snapshot: Optional[str] = Field(default=None, alias="imageUrlSnapshot")
    provider_name_snapshot: Optional[str] = Field(default=None, alias="providerNameSnapshot")

    @classmethod
    def from_item(cls, item: CartItem, quantity: Optional[int] = None) -> "CreateCartItemRequest":
        return cls(
            product_id=item.product_id,
            quantity=quantity if quantity is not None else item.quantity,
            price_snapshot=to_float(item.price_snapshot),
            color_snapshot=item.color_snapshot,
            size_snapshot=item.size_snapshot,
            product_name_snapshot=item.product_name_snapshot or None,
            image_url_snapshot=item.image_url_snapshot,
            provider_name_snapshot=item.provider_name_snapshot,
        )

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True)
