"""Pytest configuration and fixtures"""
import os
import pytest
from typing import List, Optional
from unittest.mock import AsyncMock, Mock

# Keep tests off real backends
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test_key")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from storefront.cart import CartStore, LineItem, MemoryCartStorage, ScopedCartStorage
from storefront.constants import GuestCartPolicy
from storefront.errors import PersistenceError
from storefront.services import Identity, SessionAuthProvider, StaticProductCatalog


class FlakyStorage(MemoryCartStorage):
    """Memory backend whose reads/writes can be switched to fail per key prefix."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_reads: set = set()
        self.fail_writes: set = set()
        self.writes: List[tuple] = []

    def _fails(self, prefixes: set, scope_key: str) -> bool:
        return any(scope_key.startswith(p) for p in prefixes)

    async def read(self, scope_key: str) -> Optional[List[LineItem]]:
        if self._fails(self.fail_reads, scope_key):
            raise PersistenceError("read refused", scope_key=scope_key)
        return await super().read(scope_key)

    async def write(self, scope_key: str, items: List[LineItem]) -> None:
        if self._fails(self.fail_writes, scope_key):
            raise PersistenceError("write refused", scope_key=scope_key)
        self.writes.append((scope_key, [(i.product_id, i.size, i.quantity) for i in items]))
        await super().write(scope_key, items)


@pytest.fixture
def sample_products():
    """Catalog rows in the Supabase (snake_case) shape"""
    return [
        {
            "product_id": "tee-black",
            "name": "Black Oversized Tee",
            "regular_price": 500,
            "sale_price": None,
            "image_url": "images/tee-black.jpg",
            "category": "t-shirts",
            "in_stock": True,
            "stock_count": 25,
            "available_sizes": ["S", "M", "L", "XL"],
        },
        {
            "product_id": "hoodie-grey",
            "name": "Grey Hoodie",
            "regular_price": 1299,
            "sale_price": 999,
            "on_sale": True,
            "image_url": "images/hoodie-grey.jpg",
            "category": "hoodies",
            "in_stock": True,
            "stock_count": 15,
            "available_sizes": ["M", "L"],
        },
        {
            "product_id": "cap-red",
            "name": "Red Cap",
            "regular_price": 250,
            "in_stock": True,
            "stock_count": 2,
            "available_sizes": ["ONE"],
        },
        {
            "product_id": "socks-white",
            "name": "White Socks",
            "regular_price": 150,
            "in_stock": False,
            "stock_count": 0,
            "available_sizes": ["FREE"],
        },
    ] + [
        {
            "product_id": f"bulk-{n}",
            "name": f"Bulk Item {n}",
            "regular_price": 100,
            "in_stock": True,
            "stock_count": 100,
            "available_sizes": [],
        }
        for n in range(6)
    ]


@pytest.fixture
def catalog(sample_products):
    return StaticProductCatalog(sample_products)


@pytest.fixture
def user_a():
    return Identity(id="user-a", email="asha@example.com", name="Asha")


@pytest.fixture
def user_b():
    return Identity(id="user-b", email="bilal@example.com", name="Bilal")


@pytest.fixture
def auth():
    """Signed-out session"""
    return SessionAuthProvider()


@pytest.fixture
def signed_in_auth(user_a):
    return SessionAuthProvider(identity=user_a)


@pytest.fixture
def device():
    return FlakyStorage()


@pytest.fixture
def remote():
    return FlakyStorage()


@pytest.fixture
def storage(device, remote):
    return ScopedCartStorage(device, remote)


@pytest.fixture
def notifier():
    notifier = Mock()
    notifier.notify = AsyncMock()
    return notifier


@pytest.fixture
def store(signed_in_auth, catalog, storage, notifier):
    """Store for a signed-in user (not loaded yet)"""
    return CartStore(signed_in_auth, catalog, storage, notifier=notifier)


@pytest.fixture
def make_store(catalog, storage):
    """Factory for stores with a custom auth provider / policy"""
    def _make(auth, policy=GuestCartPolicy.ADOPT, **kwargs):
        return CartStore(auth, catalog, storage, guest_policy=policy, **kwargs)
    return _make


@pytest.fixture
def mock_supabase_client():
    """Mock async Supabase client; execute() is awaited"""
    client = Mock()

    table_mock = Mock()
    table_mock.select.return_value = table_mock
    table_mock.insert.return_value = table_mock
    table_mock.update.return_value = table_mock
    table_mock.delete.return_value = table_mock
    table_mock.upsert.return_value = table_mock
    table_mock.eq.return_value = table_mock
    table_mock.limit.return_value = table_mock
    table_mock.execute = AsyncMock(return_value=Mock(data=[]))

    client.table.return_value = table_mock
    return client


@pytest.fixture
def mock_redis():
    redis = Mock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    return redis
