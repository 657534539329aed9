"""Cart models with Decimal-based pricing."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Tuple

from storefront.errors import DEFAULT_MESSAGES, CartError
from storefront.services.models import Identity, Product
from storefront.services.money import multiply, normalize, subtract, to_decimal, to_float


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class LineItem:
    """Single line in the cart, keyed by (product_id, size)."""
    product_id: str
    name: str
    size: str
    quantity: int
    price: Decimal  # Unit price captured at add time
    original_price: Decimal  # Regular price, for showing the discount
    image: Optional[str] = None
    category: Optional[str] = None
    added_at: str = ""

    def __post_init__(self):
        if not self.added_at:
            self.added_at = _utcnow_iso()
        self.product_id = str(self.product_id)
        self.price = to_decimal(self.price)
        self.original_price = to_decimal(self.original_price) if self.original_price is not None else self.price
        self.quantity = int(self.quantity)

    @classmethod
    def from_product(cls, product: Product, size: str, quantity: int) -> "LineItem":
        """Snapshot product metadata and price into a new line."""
        return cls(
            product_id=product.id,
            name=product.name,
            size=size,
            quantity=quantity,
            price=product.effective_price,
            original_price=product.regular_price,
            image=product.image,
            category=product.category,
        )

    @property
    def key(self) -> Tuple[str, str]:
        return (self.product_id, self.size)

    @property
    def line_total(self) -> Decimal:
        return multiply(self.price, self.quantity)

    @property
    def savings(self) -> Decimal:
        """Discount against the regular price for all units."""
        per_unit = subtract(self.original_price, self.price)
        return multiply(per_unit, self.quantity) if per_unit > 0 else Decimal("0")

    def copy(self) -> "LineItem":
        return replace(self)

    def to_dict(self) -> dict:
        """
        Serialize in the storefront's persisted JSON shape (camelCase).

        Prices are numbers so carts stay readable by the browser client.
        """
        return {
            "productId": self.product_id,
            "name": self.name,
            "size": self.size,
            "quantity": self.quantity,
            "price": to_float(normalize(self.price)),
            "originalPrice": to_float(normalize(self.original_price)),
            "image": self.image,
            "category": self.category,
            "addedAt": self.added_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        """Create from a persisted dict; accepts camelCase or snake_case keys."""
        def pick(camel: str, snake: str, default: Any = None) -> Any:
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        product_id = pick("productId", "product_id")
        size = data["size"]
        if not product_id or not size:
            raise ValueError("line item requires productId and size")
        quantity = int(data["quantity"])
        if quantity < 1:
            raise ValueError(f"line item quantity must be positive, got {quantity}")
        price = data["price"]

        return cls(
            product_id=product_id,
            name=data.get("name", ""),
            size=str(size),
            quantity=quantity,
            price=to_decimal(price),
            original_price=to_decimal(pick("originalPrice", "original_price", price)),
            image=data.get("image"),
            category=data.get("category"),
            added_at=pick("addedAt", "added_at", ""),
        )


@dataclass(frozen=True)
class CartTotals:
    """Derived cart figures. Never persisted."""
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    total_item_count: int
    free_shipping_remaining: Decimal

    def to_dict(self) -> dict:
        return {
            "subtotal": to_float(self.subtotal),
            "tax": to_float(self.tax),
            "shipping": to_float(self.shipping),
            "discount": to_float(self.discount),
            "total": to_float(self.total),
            "total_item_count": self.total_item_count,
            "free_shipping_remaining": to_float(self.free_shipping_remaining),
        }


class LoadState(str, Enum):
    """CartStore lifecycle per owning context."""
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"


@dataclass(frozen=True)
class CartScope:
    """Owner context of a cart: guest (device) or a signed-in identity."""
    identity: Optional[Identity] = None

    GUEST_KEY = "guest"
    USER_PREFIX = "user:"
    FALLBACK_PREFIX = "fallback:"
    UNMERGED_PREFIX = "unmerged:"

    @classmethod
    def guest(cls) -> "CartScope":
        return cls(None)

    @classmethod
    def for_identity(cls, identity: Optional[Identity]) -> "CartScope":
        return cls(identity)

    @property
    def is_guest(self) -> bool:
        return self.identity is None

    @property
    def scope_key(self) -> str:
        if self.identity is None:
            return self.GUEST_KEY
        return f"{self.USER_PREFIX}{self.identity.cart_owner}"

    @property
    def fallback_key(self) -> str:
        """Device-local key holding user writes the remote store rejected."""
        return f"{self.FALLBACK_PREFIX}{self.scope_key}"

    @property
    def unmerged_key(self) -> str:
        """
        Device-local key holding lines added while the remote cart was
        unreadable. Unlike the fallback copy these are not a full cart and
        get folded into the remote cart, not written over it.
        """
        return f"{self.UNMERGED_PREFIX}{self.scope_key}"

    def same_owner(self, identity: Optional[Identity]) -> bool:
        if self.identity is None or identity is None:
            return self.identity is None and identity is None
        return self.identity.id == identity.id


@dataclass(frozen=True)
class CartSnapshot:
    """Read-only view handed to display code."""
    items: Tuple[LineItem, ...]
    totals: CartTotals
    scope: CartScope
    state: LoadState

    @property
    def subtotal(self) -> Decimal:
        return self.totals.subtotal

    @property
    def tax(self) -> Decimal:
        return self.totals.tax

    @property
    def shipping(self) -> Decimal:
        return self.totals.shipping

    @property
    def total(self) -> Decimal:
        return self.totals.total

    @property
    def total_item_count(self) -> int:
        return self.totals.total_item_count

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_dict(self) -> dict:
        return {
            "scope": self.scope.scope_key,
            "state": self.state.value,
            "items": [
                {**item.to_dict(), "lineTotal": to_float(item.line_total)}
                for item in self.items
            ],
            **self.totals.to_dict(),
        }


@dataclass
class CartResult:
    """
    Outcome of a cart operation.

    Validation failures come back as `ok=False` with an error code; a
    mutation that landed in memory but could not be persisted remotely is
    `ok=True` with `warning` set and `error=PERSISTENCE_FAILURE`.
    """
    ok: bool
    error: Optional[CartError] = None
    message: str = ""
    warning: Optional[str] = None
    snapshot: Optional[CartSnapshot] = field(default=None, repr=False)

    @classmethod
    def success(cls, message: str = "", *, warning: Optional[str] = None,
                snapshot: Optional[CartSnapshot] = None) -> "CartResult":
        error = CartError.PERSISTENCE_FAILURE if warning else None
        return cls(ok=True, error=error, message=message, warning=warning, snapshot=snapshot)

    @classmethod
    def failure(cls, error: CartError, message: Optional[str] = None) -> "CartResult":
        return cls(ok=False, error=error, message=message or DEFAULT_MESSAGES[error])

    @property
    def degraded(self) -> bool:
        return self.ok and self.warning is not None

    def __bool__(self) -> bool:
        return self.ok
