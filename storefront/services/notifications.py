"""
Cart notifications.

Best-effort inbox entries ("Item Added to Cart") in `user_notifications`.
Failures are logged at warning level and never reach the cart.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from supabase._async.client import AsyncClient

from storefront.constants import NotificationKind
from storefront.logging import get_logger, mask_email_for_logging

from .models import Identity

logger = get_logger(__name__)


@runtime_checkable
class CartNotifier(Protocol):
    async def notify(
        self,
        identity: Identity,
        kind: NotificationKind,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


class SupabaseNotificationService:
    """Writes user notifications to Supabase."""

    def __init__(self, client: AsyncClient, table: str = "user_notifications") -> None:
        self.client = client
        self.table = table

    async def notify(
        self,
        identity: Identity,
        kind: NotificationKind,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        row = {
            "user_email": identity.cart_owner,
            "type": kind.value,
            "title": title,
            "message": message,
            "data": json.dumps(data, default=str) if data else None,
            "is_read": False,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self.client.table(self.table).insert(row).execute()
        except Exception as e:
            logger.warning(f"Error saving notification for {mask_email_for_logging(identity.cart_owner)}: {e}")
