"""Cart package: models, pricing, storage, and the CartStore."""
from .models import CartResult, CartScope, CartSnapshot, CartTotals, LineItem, LoadState
from .pricing import compute_totals
from .service import CartStore, build_cart_store, merge_lines
from .storage import (
    MemoryCartStorage,
    PersistenceBackend,
    RedisCartStorage,
    ScopedCartStorage,
    SupabaseCartStorage,
)

__all__ = [
    "CartResult",
    "CartScope",
    "CartSnapshot",
    "CartStore",
    "CartTotals",
    "LineItem",
    "LoadState",
    "MemoryCartStorage",
    "PersistenceBackend",
    "RedisCartStorage",
    "ScopedCartStorage",
    "SupabaseCartStorage",
    "build_cart_store",
    "compute_totals",
    "merge_lines",
]
