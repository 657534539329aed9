"""
Cart persistence backends.

Every backend is a key-value store of line-item lists addressed by scope
key ("guest", "user:<owner>", and the device-side "fallback:user:<owner>"
and "unmerged:user:<owner>"). Backends raise PersistenceError; deciding
what to do about it is the CartStore's job.
"""
import json
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, runtime_checkable

import httpx
from postgrest.exceptions import APIError
from supabase._async.client import AsyncClient
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential
from upstash_redis.asyncio import Redis as AsyncRedis

from storefront.db import RedisKeys, TTL
from storefront.errors import PersistenceError
from storefront.logging import get_logger, sanitize_string_for_logging

from .models import CartScope, LineItem

logger = get_logger(__name__)


@runtime_checkable
class PersistenceBackend(Protocol):
    """Key-value store for cart contents."""

    async def read(self, scope_key: str) -> Optional[List[LineItem]]:
        """Return the stored items, or None when nothing is stored."""
        ...

    async def write(self, scope_key: str, items: List[LineItem]) -> None:
        ...

    async def delete(self, scope_key: str) -> None:
        ...


def dump_items(items: List[LineItem]) -> str:
    return json.dumps([item.to_dict() for item in items])


def load_items(raw) -> List[LineItem]:
    """Parse a stored payload (JSON text or already-decoded list)."""
    data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    if not isinstance(data, list):
        raise TypeError(f"cart payload must be a list, got {type(data).__name__}")
    return [LineItem.from_dict(entry) for entry in data]


class MemoryCartStorage:
    """
    In-process backend.

    Used for device carts when Redis is not configured, and in tests.
    Stores serialized payloads so callers never share LineItem objects.
    """

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    async def read(self, scope_key: str) -> Optional[List[LineItem]]:
        raw = self._data.get(scope_key)
        if raw is None:
            return None
        return load_items(raw)

    async def write(self, scope_key: str, items: List[LineItem]) -> None:
        self._data[scope_key] = dump_items(items)

    async def delete(self, scope_key: str) -> None:
        self._data.pop(scope_key, None)

    def keys(self) -> List[str]:
        return list(self._data)


class RedisCartStorage:
    """
    Device carts in Upstash Redis.

    Keys are namespaced by device id so one Redis serves many devices:
    cart:{device_id}:{scope_key}. Abandoned carts expire after `ttl`.
    """

    def __init__(self, redis: AsyncRedis, device_id: str, ttl: int = TTL.GUEST_CART) -> None:
        if not device_id:
            raise ValueError("device_id must be a non-empty string")
        self.redis = redis
        self.device_id = device_id
        self.ttl = ttl

    def _key(self, scope_key: str) -> str:
        return RedisKeys.cart_key(self.device_id, scope_key)

    async def read(self, scope_key: str) -> Optional[List[LineItem]]:
        key = self._key(scope_key)
        try:
            data = await self.redis.get(key)
        except Exception as e:
            logger.error(f"Failed to read cart from Redis: {e}")
            raise PersistenceError(f"Cart storage unavailable: {e}", scope_key=scope_key) from e

        if not data:
            return None

        try:
            return load_items(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            # Corrupted data - clear it and start fresh
            logger.warning(f"Corrupted cart data under {sanitize_string_for_logging(key)}: {e}")
            await self.delete(scope_key)
            return None

    async def write(self, scope_key: str, items: List[LineItem]) -> None:
        try:
            await self.redis.set(self._key(scope_key), dump_items(items), ex=self.ttl)
        except Exception as e:
            logger.error(f"Failed to save cart to Redis: {e}")
            raise PersistenceError(f"Cart storage unavailable: {e}", scope_key=scope_key) from e

    async def delete(self, scope_key: str) -> None:
        try:
            await self.redis.delete(self._key(scope_key))
        except Exception as e:
            logger.error(f"Failed to delete cart from Redis: {e}")
            raise PersistenceError(f"Cart storage unavailable: {e}", scope_key=scope_key) from e


# Transport hiccups are worth a retry; API errors (RLS, schema) are not
TRANSIENT_ERRORS = (httpx.TransportError,)


class SupabaseCartStorage:
    """
    Signed-in carts in the Supabase `user_carts` table.

    Row shape: user_email (unique), cart_data (JSON text), updated_at.
    Only "user:" scope keys are accepted.
    """

    def __init__(self, client: AsyncClient, table: str = "user_carts") -> None:
        self.client = client
        self.table = table

    @staticmethod
    def _owner(scope_key: str) -> str:
        if not scope_key.startswith(CartScope.USER_PREFIX):
            raise PersistenceError(
                f"Remote cart storage only holds user carts, got {scope_key!r}",
                scope_key=scope_key,
                recoverable=False,
            )
        return scope_key[len(CartScope.USER_PREFIX):]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    async def _select(self, owner: str):
        return (
            await self.client.table(self.table)
            .select("cart_data")
            .eq("user_email", owner)
            .limit(1)
            .execute()
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    async def _upsert(self, owner: str, payload: str):
        return (
            await self.client.table(self.table)
            .upsert(
                {
                    "user_email": owner,
                    "cart_data": payload,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                },
                on_conflict="user_email",
            )
            .execute()
        )

    async def read(self, scope_key: str) -> Optional[List[LineItem]]:
        owner = self._owner(scope_key)
        try:
            result = await self._select(owner)
        except APIError as e:
            logger.warning(f"Error loading user cart from Supabase: {e.message}")
            raise PersistenceError(f"Remote cart read failed: {e.message}", scope_key=scope_key, recoverable=False) from e
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Supabase unreachable while loading cart: {e}")
            raise PersistenceError(f"Remote cart read failed: {e}", scope_key=scope_key) from e

        # No row yet is a first login, not an error
        if not result.data:
            return None

        raw = result.data[0].get("cart_data")
        if not raw:
            return None

        try:
            return load_items(raw)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Corrupted remote cart for {sanitize_string_for_logging(owner)}: {e}")
            return None

    async def write(self, scope_key: str, items: List[LineItem]) -> None:
        owner = self._owner(scope_key)
        try:
            await self._upsert(owner, dump_items(items))
        except APIError as e:
            logger.warning(f"Error saving user cart to Supabase: {e.message}")
            raise PersistenceError(f"Remote cart write failed: {e.message}", scope_key=scope_key, recoverable=False) from e
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Supabase unreachable while saving cart: {e}")
            raise PersistenceError(f"Remote cart write failed: {e}", scope_key=scope_key) from e

    async def delete(self, scope_key: str) -> None:
        owner = self._owner(scope_key)
        try:
            await self.client.table(self.table).delete().eq("user_email", owner).execute()
        except (APIError, *TRANSIENT_ERRORS) as e:
            raise PersistenceError(f"Remote cart delete failed: {e}", scope_key=scope_key) from e


class ScopedCartStorage:
    """
    Routes scope keys to the right backend.

    "user:*" goes to the remote backend; "guest", "fallback:*" and
    "unmerged:*" stay on the device. Without a remote backend everything
    stays on the device.
    """

    def __init__(self, device: PersistenceBackend, remote: Optional[PersistenceBackend] = None) -> None:
        self.device = device
        self.remote = remote

    def backend_for(self, scope_key: str) -> PersistenceBackend:
        if self.remote is not None and scope_key.startswith(CartScope.USER_PREFIX):
            return self.remote
        return self.device

    async def read(self, scope_key: str) -> Optional[List[LineItem]]:
        return await self.backend_for(scope_key).read(scope_key)

    async def write(self, scope_key: str, items: List[LineItem]) -> None:
        await self.backend_for(scope_key).write(scope_key, items)

    async def delete(self, scope_key: str) -> None:
        await self.backend_for(scope_key).delete(scope_key)
