# Services Module
from .auth import AuthProvider, SessionAuthProvider
from .catalog import ProductCatalog, StaticProductCatalog, SupabaseProductCatalog
from .models import Identity, Product
from .notifications import CartNotifier, SupabaseNotificationService

__all__ = [
    "AuthProvider",
    "CartNotifier",
    "Identity",
    "Product",
    "ProductCatalog",
    "SessionAuthProvider",
    "StaticProductCatalog",
    "SupabaseNotificationService",
    "SupabaseProductCatalog",
]
