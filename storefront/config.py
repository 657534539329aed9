"""
Storefront configuration.

Settings come from environment variables; a local `.env` file is loaded
first when present (python-dotenv), values already in the environment win.

Required for the production stack:
  - SUPABASE_URL
  - SUPABASE_KEY (anon key; carts and notifications are protected by RLS)

Optional:
  - UPSTASH_REDIS_REST_URL / UPSTASH_REDIS_REST_TOKEN (device carts in Redis;
    an in-process store is used when unset)
  - CART_TTL_SECONDS (guest/device cart expiry, default 30 days)
  - PRODUCT_CACHE_TTL_SECONDS (catalog cache, default 10 minutes)
  - CART_GUEST_POLICY (adopt | merge | ignore)
  - USER_CARTS_TABLE, PRODUCTS_TABLE, NOTIFICATIONS_TABLE
"""
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from storefront.constants import GuestCartPolicy
from storefront.logging import get_logger

logger = get_logger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _policy_env(name: str, default: GuestCartPolicy) -> GuestCartPolicy:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    try:
        return GuestCartPolicy(raw)
    except ValueError:
        logger.warning(f"Unknown {name}={raw!r}, using {default.value}")
        return default


@dataclass(frozen=True)
class Settings:
    """Resolved storefront settings."""
    supabase_url: str = ""
    supabase_key: str = ""
    redis_url: str = ""
    redis_token: str = ""
    cart_ttl_seconds: int = 30 * 24 * 3600
    product_cache_ttl_seconds: int = 600
    guest_policy: GuestCartPolicy = GuestCartPolicy.ADOPT
    user_carts_table: str = "user_carts"
    products_table: str = "products"
    notifications_table: str = "user_notifications"

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def redis_configured(self) -> bool:
        return bool(self.redis_url and self.redis_token)


def load_settings(env_file: str | None = ".env") -> Settings:
    """Read settings from the environment (and `env_file` if it exists)."""
    if env_file and os.path.exists(env_file):
        load_dotenv(env_file, override=False)

    return Settings(
        supabase_url=os.environ.get("SUPABASE_URL", ""),
        supabase_key=os.environ.get("SUPABASE_KEY", ""),
        redis_url=os.environ.get("UPSTASH_REDIS_REST_URL", ""),
        redis_token=os.environ.get("UPSTASH_REDIS_REST_TOKEN", ""),
        cart_ttl_seconds=_int_env("CART_TTL_SECONDS", Settings.cart_ttl_seconds),
        product_cache_ttl_seconds=_int_env("PRODUCT_CACHE_TTL_SECONDS", Settings.product_cache_ttl_seconds),
        guest_policy=_policy_env("CART_GUEST_POLICY", Settings.guest_policy),
        user_carts_table=os.environ.get("USER_CARTS_TABLE", Settings.user_carts_table),
        products_table=os.environ.get("PRODUCTS_TABLE", Settings.products_table),
        notifications_table=os.environ.get("NOTIFICATIONS_TABLE", Settings.notifications_table),
    )


@lru_cache
def get_settings() -> Settings:
    """Cached settings; call get_settings.cache_clear() after changing env in tests."""
    return load_settings()
