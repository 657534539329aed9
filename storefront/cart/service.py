"""
CartStore - the storefront's single source of truth for the active cart.

Owns the line items of whichever context is active (guest device cart or a
signed-in user's remote cart), recomputes totals after every change and
persists them. Features:
- One asyncio.Lock serializes loads, mutations and their writes, so writes
  land in mutation order and a login/logout reload waits for the save in
  flight
- Remote write failures fall back to a device copy that is synced on the
  next successful write or load
- Guest cart handling on login follows GuestCartPolicy
"""
import asyncio
import inspect
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Set, Tuple, Union

from storefront.config import Settings, get_settings
from storefront.constants import (
    MAX_ITEMS,
    MAX_QUANTITY_PER_ITEM,
    GuestCartPolicy,
    NotificationKind,
)
from storefront.errors import (
    ERROR_CART_EMPTY,
    ERROR_CHECKOUT_AUTH_REQUIRED,
    ERROR_INVALID_PRODUCT,
    ERROR_INVALID_QUANTITY,
    ERROR_INVALID_SIZE,
    WARNING_CART_NOT_SAVED,
    WARNING_CART_SAVED_LOCALLY,
    CartError,
    ConfigurationError,
    PersistenceError,
)
from storefront.logging import get_logger, mask_email_for_logging, sanitize_id_for_logging
from storefront.services.auth import AuthProvider
from storefront.services.catalog import ProductCatalog
from storefront.services.models import Identity, Product
from storefront.services.money import to_float
from storefront.services.notifications import CartNotifier

from .models import CartResult, CartScope, CartSnapshot, CartTotals, LineItem, LoadState
from .pricing import compute_totals
from .storage import PersistenceBackend

logger = get_logger(__name__)

ChangeListener = Callable[[CartSnapshot], Union[None, Awaitable[None]]]


def merge_lines(base: Iterable[LineItem], incoming: Iterable[LineItem]) -> List[LineItem]:
    """
    Fold `incoming` lines into `base` by (product_id, size).

    Quantities add up and are capped at MAX_QUANTITY_PER_ITEM; base order is
    kept and new keys are appended. Inputs are not modified.
    """
    merged: List[LineItem] = []
    by_key = {}
    for item in list(base) + list(incoming):
        existing = by_key.get(item.key)
        if existing is None:
            line = item.copy()
            line.quantity = min(line.quantity, MAX_QUANTITY_PER_ITEM)
            by_key[line.key] = line
            merged.append(line)
        else:
            existing.quantity = min(existing.quantity + item.quantity, MAX_QUANTITY_PER_ITEM)
    return merged


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class CartStore:
    """
    Cart state, totals and persistence for one storefront session.

    Construct one per session and hand it to the UI layers; nothing else
    may touch the item list. Display code reads get_snapshot() or listens
    through on_change().
    """

    def __init__(
        self,
        auth: AuthProvider,
        catalog: ProductCatalog,
        storage: PersistenceBackend,
        notifier: Optional[CartNotifier] = None,
        guest_policy: GuestCartPolicy = GuestCartPolicy.ADOPT,
    ) -> None:
        self.auth = auth
        self.catalog = catalog
        self.storage = storage
        self.notifier = notifier
        self.guest_policy = guest_policy

        self._items: List[LineItem] = []
        self._totals: CartTotals = compute_totals([])
        self._scope = CartScope.guest()
        self._state = LoadState.UNLOADED
        # Remote cart could not be read at load: in-memory lines are only
        # what was added since, and are folded into the remote cart before
        # the next mutation rather than written over it
        self._remote_unverified = False
        self._has_fallback = False
        self._has_unmerged = False
        # Guest lines were merged in memory but the merged cart is not
        # stored anywhere yet
        self._guest_merge_pending = False

        self._lock = asyncio.Lock()
        self._listeners: List[ChangeListener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe_auth = auth.subscribe(self._on_identity_changed)

    # ---- read side ----

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def scope(self) -> CartScope:
        return self._scope

    @property
    def items(self) -> Tuple[LineItem, ...]:
        """Copies of the current lines."""
        return tuple(item.copy() for item in self._items)

    @property
    def totals(self) -> CartTotals:
        return self._totals

    @property
    def total_items(self) -> int:
        return self._totals.total_item_count

    def get_snapshot(self) -> CartSnapshot:
        return CartSnapshot(
            items=self.items,
            totals=self._totals,
            scope=self._scope,
            state=self._state,
        )

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """
        Call `listener(snapshot)` after every mutation and load.

        Returns a callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- mutations ----

    async def add_item(self, product_id: str, size: str, quantity: int = 1) -> CartResult:
        """
        Add `quantity` of a product variant.

        Rules:
          - caller must be signed in
          - product must exist and have `quantity` in stock
          - cart may hold at most MAX_ITEMS units (checked before merging)
          - a line may hold at most MAX_QUANTITY_PER_ITEM units; an add that
            would exceed it changes nothing
          - price is snapshotted now (sale price when set)
        """
        identity = self.auth.get_current_identity()
        if identity is None:
            self.auth.require_login("add items to cart")
            return CartResult.failure(CartError.AUTH_REQUIRED)

        if not product_id or not isinstance(product_id, str) or not size or not isinstance(size, str):
            return CartResult.failure(CartError.VALIDATION_ERROR, ERROR_INVALID_PRODUCT)
        if not _is_count(quantity) or quantity < 1:
            return CartResult.failure(CartError.VALIDATION_ERROR, ERROR_INVALID_QUANTITY)

        product = await self._lookup_product(product_id)
        if product is None:
            return CartResult.failure(CartError.PRODUCT_NOT_FOUND)
        if product.available_sizes and size not in product.available_sizes:
            return CartResult.failure(CartError.VALIDATION_ERROR, ERROR_INVALID_SIZE)
        if not product.can_supply(quantity):
            return CartResult.failure(CartError.INSUFFICIENT_STOCK)

        snapshot = None
        async with self._lock:
            changed = await self._ensure_scope(identity)
            changed = await self._reconcile_if_needed() or changed
            result = self._apply_add(product, size, quantity)
            if result is None:
                warning = await self._persist()
                snapshot = self.get_snapshot()
                result = CartResult.success(f"{product.name} added to cart", warning=warning, snapshot=snapshot)
            elif changed:
                snapshot = self.get_snapshot()

        if snapshot is not None:
            self._emit_change(snapshot)
        if result.ok:
            self._notify_added(identity, product, size, quantity)
        return result

    def _apply_add(self, product: Product, size: str, quantity: int) -> Optional[CartResult]:
        """In-memory part of add_item; returns a failure or None on success."""
        if self._count() + quantity > MAX_ITEMS:
            return CartResult.failure(CartError.CART_FULL)

        existing = self._find(product.id, size)
        if existing is not None:
            new_quantity = existing.quantity + quantity
            if new_quantity > MAX_QUANTITY_PER_ITEM:
                return CartResult.failure(CartError.QUANTITY_LIMIT_EXCEEDED)
            existing.quantity = new_quantity
        else:
            if quantity > MAX_QUANTITY_PER_ITEM:
                return CartResult.failure(CartError.QUANTITY_LIMIT_EXCEEDED)
            self._items.append(LineItem.from_product(product, size, quantity))

        self._recompute()
        return None

    async def remove_item(self, index: int) -> CartResult:
        """Remove the line at `index`. Stale indices are ignored."""
        async with self._lock:
            changed = await self._reconcile_if_needed()
            if not self._valid_index(index):
                logger.debug(f"Ignoring remove for stale index {index!r}")
                if changed:
                    self._emit_change(self.get_snapshot())
                return CartResult.success()
            removed = self._items.pop(index)
            self._recompute()
            warning = await self._persist()
            snapshot = self.get_snapshot()

        self._emit_change(snapshot)
        return CartResult.success(f"{removed.name} removed from cart", warning=warning, snapshot=snapshot)

    async def update_item_quantity(self, index: int, new_quantity: int) -> CartResult:
        """
        Set the quantity of the line at `index`.

        `new_quantity <= 0` removes the line. Increases are checked against
        the cart-wide cap and the product's current stock; decreases always
        go through.
        """
        if not _is_count(new_quantity):
            return CartResult.failure(CartError.VALIDATION_ERROR, ERROR_INVALID_QUANTITY)
        if new_quantity <= 0:
            return await self.remove_item(index)
        if new_quantity > MAX_QUANTITY_PER_ITEM:
            logger.warning(f"Rejected quantity {new_quantity} above per-item limit")
            return CartResult.failure(CartError.QUANTITY_LIMIT_EXCEEDED)

        async with self._lock:
            changed = await self._reconcile_if_needed()
            failure = None
            if not self._valid_index(index):
                failure = CartResult.success()
            else:
                item = self._items[index]
                delta = new_quantity - item.quantity
                if delta > 0:
                    if self._count() + delta > MAX_ITEMS:
                        failure = CartResult.failure(CartError.CART_FULL)
                    else:
                        failure = await self._check_restock(item, new_quantity)
            if failure is not None:
                if changed:
                    self._emit_change(self.get_snapshot())
                return failure

            item.quantity = new_quantity
            self._recompute()
            warning = await self._persist()
            snapshot = self.get_snapshot()

        self._emit_change(snapshot)
        return CartResult.success(warning=warning, snapshot=snapshot)

    async def _check_restock(self, item: LineItem, new_quantity: int) -> Optional[CartResult]:
        """Stock check for quantity increases; catalog outages do not block."""
        try:
            product = await self.catalog.get_product(item.product_id)
        except Exception as e:
            logger.warning(f"Catalog unavailable, skipping stock check for {sanitize_id_for_logging(item.product_id)}: {e}")
            return None
        if product is None:
            return CartResult.failure(CartError.PRODUCT_NOT_FOUND)
        if not product.can_supply(new_quantity):
            return CartResult.failure(CartError.INSUFFICIENT_STOCK)
        return None

    async def clear_cart(self) -> CartResult:
        """
        Empty the cart.

        Asking the user to confirm is the caller's job; the store clears
        unconditionally. An empty cart is a complete cart, so it replaces
        the remote one even when that could not be read.
        """
        async with self._lock:
            self._items = []
            self._remote_unverified = False
            self._recompute()
            warning = await self._persist()
            snapshot = self.get_snapshot()

        self._emit_change(snapshot)
        return CartResult.success("Cart cleared", warning=warning, snapshot=snapshot)

    async def begin_checkout(self) -> CartResult:
        """Gate for the checkout page: signed in and something to buy."""
        if self.auth.get_current_identity() is None:
            self.auth.require_login("proceed to checkout")
            return CartResult.failure(CartError.AUTH_REQUIRED, ERROR_CHECKOUT_AUTH_REQUIRED)

        async with self._lock:
            snapshot = self.get_snapshot()
        if snapshot.is_empty:
            return CartResult.failure(CartError.CART_EMPTY, ERROR_CART_EMPTY)
        return CartResult.success(snapshot=snapshot)

    # ---- load / save ----

    async def load(self, scope: Optional[CartScope] = None) -> CartSnapshot:
        """
        Replace in-memory state with the cart of `scope`.

        Defaults to the auth provider's current identity. Never raises for
        storage problems; the worst case is an empty or device-only cart.
        """
        if scope is None:
            scope = CartScope.for_identity(self.auth.get_current_identity())

        async with self._lock:
            await self._load_locked(scope)
            snapshot = self.get_snapshot()

        self._emit_change(snapshot)
        return snapshot

    async def save(self) -> bool:
        """Write the current items to the active scope. False when degraded."""
        async with self._lock:
            warning = await self._persist()
        return warning is None

    async def close(self) -> None:
        """Stop listening for identity changes and wait for background tasks."""
        self._unsubscribe_auth()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _ensure_scope(self, identity: Optional[Identity]) -> bool:
        """Reload under the lock if the loaded cart belongs to someone else."""
        if self._state is LoadState.READY and self._scope.same_owner(identity):
            return False
        await self._load_locked(CartScope.for_identity(identity))
        return True

    async def _load_locked(self, scope: CartScope) -> None:
        self._state = LoadState.LOADING
        self._remote_unverified = False
        self._has_fallback = False
        self._has_unmerged = False
        self._guest_merge_pending = False

        if scope.is_guest:
            items = await self._read_quietly(scope.scope_key) or []
        else:
            items = await self._load_user_items(scope)

        self._scope = scope
        self._items = merge_lines([], items)
        self._recompute()
        self._state = LoadState.READY
        logger.info(f"Loaded {'guest' if scope.is_guest else 'user'} cart with {len(self._items)} lines")

    async def _load_user_items(self, scope: CartScope) -> List[LineItem]:
        pending = await self._read_quietly(scope.fallback_key)
        unmerged = await self._read_quietly(scope.unmerged_key)
        self._has_fallback = pending is not None
        self._has_unmerged = unmerged is not None

        try:
            remote = await self.storage.read(scope.scope_key)
        except PersistenceError as e:
            logger.warning(f"Remote cart unavailable for {mask_email_for_logging(scope.identity.cart_owner)}: {e}")
            if pending is not None:
                # The device copy is the whole cart as last saved, so it
                # replaces the remote one
                return merge_lines(pending, unmerged or [])
            self._remote_unverified = True
            return unmerged or []

        if pending is not None or unmerged is not None:
            base = pending if pending is not None else (remote or [])
            items = merge_lines(base, unmerged or [])
            try:
                await self.storage.write(scope.scope_key, items)
            except PersistenceError as e:
                logger.warning(f"Device copy still unsynced: {e}")
                return items
            await self._drop_device_copies(scope)
            logger.info("Synced device copy of user cart to remote")
            return items

        guest = await self._read_quietly(CartScope.GUEST_KEY) or []

        if self.guest_policy is GuestCartPolicy.MERGE and guest:
            merged = merge_lines(remote or [], guest)
            try:
                await self.storage.write(scope.scope_key, merged)
            except PersistenceError as e:
                # Guest cart is dropped once the merged cart is stored somewhere
                logger.warning(f"Could not store merged cart, guest cart kept for now: {e}")
                self._guest_merge_pending = True
                return merged
            await self._delete_quietly(CartScope.GUEST_KEY)
            logger.info(f"Merged {len(guest)} guest lines into user cart")
            return merged

        if remote is not None:
            return remote

        if self.guest_policy is GuestCartPolicy.ADOPT:
            return [item.copy() for item in guest]
        return []

    async def _reconcile_if_needed(self) -> bool:
        """
        Fold in the remote cart that could not be read at load time.

        Runs under the lock before a mutation so the mutation applies to the
        full cart. Returns True when the items changed.
        """
        if self._scope.is_guest or not self._remote_unverified:
            return False
        try:
            remote = await self.storage.read(self._scope.scope_key)
        except PersistenceError as e:
            logger.warning(f"Remote cart still unreadable: {e}")
            return False

        self._remote_unverified = False
        if not remote:
            return False
        # Local lines keep their positions so caller indices stay valid
        self._items = merge_lines(self._items, remote)
        self._recompute()
        logger.info(f"Reconciled {len(remote)} remote lines into the active cart")
        return True

    async def _persist(self) -> Optional[str]:
        """
        Write current items to the active scope; must hold the lock.

        Returns a user-facing warning when the write degraded, else None.
        """
        scope = self._scope
        items = [item.copy() for item in self._items]

        if scope.is_guest:
            try:
                await self.storage.write(scope.scope_key, items)
            except PersistenceError as e:
                logger.warning(f"Error saving guest cart: {e}")
                return WARNING_CART_NOT_SAVED
            return None

        if self._remote_unverified:
            # Never write over a remote cart we have not seen
            return await self._persist_unmerged(scope, items)

        try:
            await self.storage.write(scope.scope_key, items)
        except PersistenceError as e:
            return await self._persist_fallback(scope, items, e)

        await self._drop_device_copies(scope)
        return None

    async def _persist_fallback(self, scope: CartScope, items: List[LineItem], error: PersistenceError) -> str:
        logger.warning(f"Error saving user cart remotely, keeping a device copy: {error}")
        try:
            await self.storage.write(scope.fallback_key, items)
        except PersistenceError as e:
            logger.error(f"Device fallback write failed too: {e}")
            return WARNING_CART_NOT_SAVED
        self._has_fallback = True
        # The device copy now holds everything the other copies held
        await self._drop_device_copies(scope, include_fallback=False)
        return WARNING_CART_SAVED_LOCALLY

    async def _persist_unmerged(self, scope: CartScope, items: List[LineItem]) -> str:
        try:
            await self.storage.write(scope.unmerged_key, items)
        except PersistenceError as e:
            logger.error(f"Could not keep unmerged cart lines on the device: {e}")
            return WARNING_CART_NOT_SAVED
        self._has_unmerged = True
        return WARNING_CART_SAVED_LOCALLY

    async def _drop_device_copies(self, scope: CartScope, *, include_fallback: bool = True) -> None:
        """Delete device-side copies that the last successful write superseded."""
        if include_fallback and self._has_fallback:
            await self._delete_quietly(scope.fallback_key)
            self._has_fallback = False
        if self._has_unmerged:
            await self._delete_quietly(scope.unmerged_key)
            self._has_unmerged = False
        if self._guest_merge_pending:
            await self._delete_quietly(CartScope.GUEST_KEY)
            self._guest_merge_pending = False
            logger.info("Merged guest cart stored, guest copy removed")

    async def _read_quietly(self, scope_key: str) -> Optional[List[LineItem]]:
        try:
            return await self.storage.read(scope_key)
        except PersistenceError as e:
            logger.warning(f"Error loading cart {scope_key.split(':', 1)[0]}: {e}")
            return None

    async def _delete_quietly(self, scope_key: str) -> None:
        try:
            await self.storage.delete(scope_key)
        except PersistenceError as e:
            logger.warning(f"Error deleting cart {scope_key.split(':', 1)[0]}: {e}")

    # ---- identity changes ----

    def _on_identity_changed(self, identity: Optional[Identity]) -> Optional[asyncio.Task]:
        if self._state is LoadState.READY and self._scope.same_owner(identity):
            return None
        logger.info("Identity changed, reloading cart")
        return self._spawn(self.load(CartScope.for_identity(identity)))

    # ---- helpers ----

    async def _lookup_product(self, product_id: str) -> Optional[Product]:
        try:
            return await self.catalog.get_product(product_id)
        except Exception as e:
            logger.error(f"Product lookup failed for {sanitize_id_for_logging(product_id)}: {e}")
            return None

    def _find(self, product_id: str, size: str) -> Optional[LineItem]:
        return next((item for item in self._items if item.key == (product_id, size)), None)

    def _count(self) -> int:
        return sum(item.quantity for item in self._items)

    def _valid_index(self, index: Any) -> bool:
        return _is_count(index) and 0 <= index < len(self._items)

    def _recompute(self) -> None:
        self._totals = compute_totals(self._items)

    def _emit_change(self, snapshot: CartSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(snapshot)
                if inspect.isawaitable(outcome):
                    self._spawn(outcome)
            except Exception as e:
                logger.error(f"Cart change listener failed: {e}", exc_info=True)

    def _notify_added(self, identity: Identity, product: Product, size: str, quantity: int) -> None:
        if self.notifier is None:
            return
        self._spawn(
            self.notifier.notify(
                identity,
                NotificationKind.CART,
                "Item Added to Cart",
                f"{product.name} ({size}) has been added to your cart",
                {
                    "productId": product.id,
                    "size": size,
                    "quantity": quantity,
                    "price": to_float(product.effective_price),
                },
            )
        )

    def _spawn(self, awaitable: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(self._guard(awaitable))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _guard(awaitable: Awaitable) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.warning(f"Background cart task failed: {e}", exc_info=True)


async def build_cart_store(
    auth: AuthProvider,
    device_id: str,
    *,
    catalog: Optional[ProductCatalog] = None,
    settings: Optional[Settings] = None,
) -> CartStore:
    """
    Wire a CartStore to the production backends and load it.

    Device carts go to Upstash Redis when configured (in-process memory
    otherwise); signed-in carts, products and notifications go to Supabase.
    """
    from storefront.db import get_redis, get_supabase
    from storefront.services.catalog import SupabaseProductCatalog
    from storefront.services.notifications import SupabaseNotificationService

    from .storage import MemoryCartStorage, RedisCartStorage, ScopedCartStorage, SupabaseCartStorage

    settings = settings or get_settings()

    if settings.redis_configured:
        device: PersistenceBackend = RedisCartStorage(get_redis(), device_id, ttl=settings.cart_ttl_seconds)
    else:
        logger.warning("Redis not configured - device carts kept in memory")
        device = MemoryCartStorage()

    remote = None
    notifier = None
    if settings.supabase_configured:
        client = await get_supabase()
        remote = SupabaseCartStorage(client, table=settings.user_carts_table)
        notifier = SupabaseNotificationService(client, table=settings.notifications_table)
        if catalog is None:
            catalog = SupabaseProductCatalog(client, table=settings.products_table, ttl=settings.product_cache_ttl_seconds)
    else:
        logger.warning("Supabase not configured - signed-in carts stay on this device")

    if catalog is None:
        raise ConfigurationError("A product catalog is required: configure Supabase or pass catalog=")

    store = CartStore(
        auth,
        catalog,
        ScopedCartStorage(device, remote),
        notifier=notifier,
        guest_policy=settings.guest_policy,
    )
    await store.load()
    return store
