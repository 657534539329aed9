"""
Storefront Core Module

Cart consistency and pricing engine for the storefront:
- cart: CartStore, line items, totals, persistence backends
- services: product catalog, auth provider, notifications, money helpers
- db: Supabase + Redis clients

Note: Imports are lazy so that importing the package does not require
Supabase/Redis credentials.
"""

__all__ = [
    "CartStore",
    "build_cart_store",
    "get_supabase",
    "get_redis",
]


def __getattr__(name):
    """Lazy attribute access for clean module loading."""
    if name == "CartStore":
        from storefront.cart.service import CartStore
        return CartStore
    elif name == "build_cart_store":
        from storefront.cart.service import build_cart_store
        return build_cart_store
    elif name == "get_supabase":
        from storefront.db import get_supabase
        return get_supabase
    elif name == "get_redis":
        from storefront.db import get_redis
        return get_redis
    raise AttributeError(f"module 'storefront' has no attribute '{name}'")
