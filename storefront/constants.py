"""Cart limits and pricing constants."""
from decimal import Decimal
from enum import Enum

# Limits
MAX_ITEMS = 50  # Aggregate quantity across all lines, checked at add time
MAX_QUANTITY_PER_ITEM = 10

# Pricing (INR, whole-rupee tax)
TAX_RATE = Decimal("0.18")  # 18% GST
FREE_SHIPPING_THRESHOLD = Decimal("1000")
SHIPPING_FLAT = Decimal("99")
CURRENCY_SYMBOL = "₹"


class GuestCartPolicy(str, Enum):
    """
    What happens to a guest cart when a user without a remote cart logs in.

    ADOPT: user cart starts as a copy of the guest items; guest copy kept.
    MERGE: guest lines are folded into the user cart, then the guest cart is cleared.
    IGNORE: user cart starts empty; guest copy kept.
    """
    ADOPT = "adopt"
    MERGE = "merge"
    IGNORE = "ignore"


class NotificationKind(str, Enum):
    """Notification categories stored in user_notifications.type."""
    ORDER = "order"
    CART = "cart"
    ACCOUNT = "account"
    SYSTEM = "system"
    PROMOTION = "promotion"
