"""Catalog and identity models shared by the cart and its collaborators."""
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from storefront.services.money import to_decimal as _to_decimal, to_optional_decimal as _to_optional_decimal


class Identity(BaseModel):
    """Signed-in user as seen by the cart. `id` scopes the remote cart."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def cart_owner(self) -> str:
        """Value stored in user_carts.user_email (falls back to id)."""
        return self.email or self.id


class Product(BaseModel):
    """
    Canonical product at the catalog boundary.

    Accepts both Supabase rows (snake_case, `product_id`) and browser
    payloads (camelCase) so callers never branch on schema.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("product_id", "productId", "id"))
    name: str
    regular_price: Decimal = Field(validation_alias=AliasChoices("regular_price", "regularPrice", "price"))
    sale_price: Optional[Decimal] = Field(default=None, validation_alias=AliasChoices("sale_price", "salePrice"))
    on_sale: bool = Field(default=False, validation_alias=AliasChoices("on_sale", "onSale"))
    image: Optional[str] = Field(default=None, validation_alias=AliasChoices("image_url", "image", "imageUrl"))
    category: Optional[str] = None
    description: Optional[str] = None
    in_stock: bool = Field(default=True, validation_alias=AliasChoices("in_stock", "inStock"))
    stock_count: int = Field(default=0, validation_alias=AliasChoices("stock_count", "stockCount"))
    available_sizes: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("available_sizes", "availableSizes", "sizes")
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v

    @field_validator("regular_price", mode="before")
    @classmethod
    def convert_price_to_decimal(cls, v):
        return _to_decimal(v)

    @field_validator("sale_price", mode="before")
    @classmethod
    def convert_sale_price(cls, v):
        return _to_optional_decimal(v)

    @field_validator("stock_count", mode="before")
    @classmethod
    def convert_stock(cls, v):
        return int(v or 0)

    @field_validator("available_sizes", mode="before")
    @classmethod
    def split_sizes(cls, v):
        # Older rows store sizes as "S,M,L"
        if v is None:
            return []
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @property
    def effective_price(self) -> Decimal:
        """Price charged at add time: sale price when set, else regular."""
        return self.sale_price if self.sale_price is not None else self.regular_price

    def can_supply(self, quantity: int) -> bool:
        return self.in_stock and self.stock_count >= quantity
