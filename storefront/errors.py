"""
Common Error Constants

Centralized user-facing error messages and cart error codes.
"""

from enum import Enum

from storefront.constants import MAX_ITEMS, MAX_QUANTITY_PER_ITEM


class CartError(str, Enum):
    """Outcome codes reported by CartStore operations."""
    AUTH_REQUIRED = "auth_required"
    VALIDATION_ERROR = "validation_error"
    PRODUCT_NOT_FOUND = "product_not_found"
    INSUFFICIENT_STOCK = "insufficient_stock"
    CART_FULL = "cart_full"
    QUANTITY_LIMIT_EXCEEDED = "quantity_limit_exceeded"
    PERSISTENCE_FAILURE = "persistence_failure"
    CART_EMPTY = "cart_empty"


# Auth errors
ERROR_AUTH_REQUIRED = "Please login to add items to your cart."
ERROR_CHECKOUT_AUTH_REQUIRED = "Please login to proceed to checkout."

# Validation errors
ERROR_INVALID_PRODUCT = "Invalid product details"
ERROR_INVALID_SIZE = "Selected size is not available for this product"
ERROR_INVALID_QUANTITY = "Quantity must be a positive whole number"

# Product errors
ERROR_PRODUCT_NOT_FOUND = "Product not found"
ERROR_INSUFFICIENT_STOCK = "Insufficient stock"

# Limit errors
ERROR_CART_FULL = f"Maximum {MAX_ITEMS} items allowed in cart"
ERROR_QUANTITY_LIMIT = f"Maximum {MAX_QUANTITY_PER_ITEM} items per product"

# Cart state
ERROR_CART_EMPTY = "Your cart is empty"

# Persistence
WARNING_CART_SAVED_LOCALLY = "Cart saved on this device only; it will sync when the connection recovers"
WARNING_CART_NOT_SAVED = "Cart could not be saved; changes are kept for this session"


DEFAULT_MESSAGES = {
    CartError.AUTH_REQUIRED: ERROR_AUTH_REQUIRED,
    CartError.VALIDATION_ERROR: ERROR_INVALID_PRODUCT,
    CartError.PRODUCT_NOT_FOUND: ERROR_PRODUCT_NOT_FOUND,
    CartError.INSUFFICIENT_STOCK: ERROR_INSUFFICIENT_STOCK,
    CartError.CART_FULL: ERROR_CART_FULL,
    CartError.QUANTITY_LIMIT_EXCEEDED: ERROR_QUANTITY_LIMIT,
    CartError.PERSISTENCE_FAILURE: WARNING_CART_NOT_SAVED,
    CartError.CART_EMPTY: ERROR_CART_EMPTY,
}


class StorefrontError(Exception):
    """Base class for storefront exceptions."""


class ConfigurationError(StorefrontError):
    """Required configuration (env vars, clients) is missing."""


class PersistenceError(StorefrontError):
    """
    A cart backend failed to read or write.

    `recoverable` is False when retrying cannot help (bad credentials,
    missing table); the store still degrades instead of raising.
    """

    def __init__(self, message: str, *, scope_key: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.scope_key = scope_key
        self.recoverable = recoverable
