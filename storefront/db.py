"""
Database Module - Supabase and Redis Clients

Provides lazy singleton instances of:
- Async Supabase client (user carts, products, notifications)
- Async Upstash Redis client (device/guest carts)
"""

from typing import Optional

from supabase._async.client import AsyncClient, create_client as acreate_client
from upstash_redis.asyncio import Redis as AsyncRedis

from storefront.config import get_settings
from storefront.errors import ConfigurationError


_async_supabase_client: Optional[AsyncClient] = None
_redis_client: Optional[AsyncRedis] = None


async def get_supabase() -> AsyncClient:
    """
    Get async Supabase client (singleton).

    Uses the anon key; row level security scopes user_carts and
    user_notifications rows to the signed-in user.
    """
    global _async_supabase_client

    if _async_supabase_client is None:
        settings = get_settings()
        if not settings.supabase_configured:
            raise ConfigurationError("SUPABASE_URL and SUPABASE_KEY must be set")
        _async_supabase_client = await acreate_client(settings.supabase_url, settings.supabase_key)

    return _async_supabase_client


def get_redis() -> AsyncRedis:
    """
    Get async Upstash Redis client (singleton).

    Uses standard Upstash env var names:
    - UPSTASH_REDIS_REST_URL
    - UPSTASH_REDIS_REST_TOKEN
    """
    global _redis_client

    if _redis_client is None:
        settings = get_settings()
        if not settings.redis_configured:
            raise ConfigurationError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        _redis_client = AsyncRedis(url=settings.redis_url, token=settings.redis_token)

    return _redis_client


def reset_clients() -> None:
    """Drop cached clients (tests, credential rotation)."""
    global _async_supabase_client, _redis_client
    _async_supabase_client = None
    _redis_client = None


class RedisKeys:
    """Redis key prefixes for cart data."""

    # Device-scoped carts: cart:{device_id}:{scope_key}
    CART = "cart:"

    @staticmethod
    def cart_key(device_id: str, scope_key: str) -> str:
        return f"{RedisKeys.CART}{device_id}:{scope_key}"


class TTL:
    """Time-to-live constants (seconds)."""

    GUEST_CART = 30 * 24 * 3600  # 30 days
    PRODUCT_CACHE = 600  # 10 minutes
