"""
Product Catalog - product lookups for the cart.

The Supabase catalog loads the whole `products` table and keeps it for
PRODUCT_CACHE seconds; realtime product changes call invalidate().
"""
import time
from typing import Dict, Iterable, List, Optional, Protocol, runtime_checkable

from postgrest.exceptions import APIError
from pydantic import ValidationError
from supabase._async.client import AsyncClient

from storefront.db import TTL
from storefront.logging import get_logger, sanitize_id_for_logging

from .models import Product

logger = get_logger(__name__)


@runtime_checkable
class ProductCatalog(Protocol):
    """What CartStore consumes from the catalog."""

    async def get_product(self, product_id: str) -> Optional[Product]:
        ...


def products_from_rows(rows: Iterable[dict]) -> List[Product]:
    """Adapt raw rows to Product, skipping rows that fail validation."""
    products = []
    for row in rows:
        try:
            products.append(Product.model_validate(row))
        except ValidationError as e:
            logger.warning(
                f"Skipping malformed product {sanitize_id_for_logging(row.get('product_id') or row.get('id'))}: "
                f"{e.error_count()} errors"
            )
    return products


class StaticProductCatalog:
    """Fixed catalog (seed data, previews, tests)."""

    def __init__(self, products: Iterable[Product | dict] = ()) -> None:
        self._products: Dict[str, Product] = {}
        for p in products:
            self.put(p)

    def put(self, product: Product | dict) -> Product:
        if not isinstance(product, Product):
            product = Product.model_validate(product)
        self._products[product.id] = product
        return product

    def remove(self, product_id: str) -> None:
        self._products.pop(product_id, None)

    async def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(str(product_id))

    async def get_all(self) -> List[Product]:
        return list(self._products.values())


class SupabaseProductCatalog:
    """Product catalog backed by the Supabase `products` table with a TTL cache."""

    def __init__(self, client: AsyncClient, table: str = "products", ttl: float = TTL.PRODUCT_CACHE) -> None:
        self.client = client
        self.table = table
        self.ttl = ttl
        self._products: Dict[str, Product] = {}
        self._loaded_at: Optional[float] = None

    @property
    def is_fresh(self) -> bool:
        return self._loaded_at is not None and (time.monotonic() - self._loaded_at) < self.ttl

    def invalidate(self) -> None:
        """Drop the cache; the next lookup refetches."""
        self._loaded_at = None

    async def refresh(self) -> List[Product]:
        """Reload all products. Keeps the previous cache if the fetch fails."""
        try:
            result = await self.client.table(self.table).select("*").execute()
        except APIError as e:
            logger.error(f"Error loading products from Supabase: {e.message}")
            return list(self._products.values())
        except Exception as e:
            logger.error(f"Products unavailable: {e}")
            return list(self._products.values())

        products = products_from_rows(result.data or [])
        self._products = {p.id: p for p in products}
        self._loaded_at = time.monotonic()
        logger.info(f"Loaded {len(products)} products from Supabase")
        return products

    async def get_all(self) -> List[Product]:
        if not self.is_fresh:
            await self.refresh()
        return list(self._products.values())

    async def get_product(self, product_id: str) -> Optional[Product]:
        if not self.is_fresh:
            await self.refresh()
        return self._products.get(str(product_id))
