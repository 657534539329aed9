"""Cart totals: subtotal, GST, shipping, discount."""
from decimal import Decimal
from typing import Iterable

from storefront.constants import FREE_SHIPPING_THRESHOLD, SHIPPING_FLAT, TAX_RATE
from storefront.services.money import multiply, round_money

from .models import CartTotals, LineItem


def compute_tax(subtotal: Decimal) -> Decimal:
    """Flat-rate tax rounded half-up to whole rupees."""
    return round_money(multiply(subtotal, TAX_RATE), to_int=True)


def compute_shipping(subtotal: Decimal) -> Decimal:
    """Free at or above the threshold, flat fee otherwise."""
    return Decimal("0") if subtotal >= FREE_SHIPPING_THRESHOLD else SHIPPING_FLAT


def compute_totals(items: Iterable[LineItem]) -> CartTotals:
    """
    Derive all cart figures from the line items.

    Pure: the same items always give the same totals, so it is safe to call
    after every mutation.

    Calculation order:
    1. subtotal = sum(price * quantity), price already includes any sale
    2. tax on the subtotal
    3. shipping from the subtotal threshold
    4. total = subtotal + tax + shipping
    """
    subtotal = Decimal("0")
    discount = Decimal("0")
    count = 0
    for item in items:
        subtotal += item.line_total
        discount += item.savings
        count += item.quantity

    tax = compute_tax(subtotal)
    shipping = compute_shipping(subtotal)

    return CartTotals(
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        discount=discount,
        total=subtotal + tax + shipping,
        total_item_count=count,
        free_shipping_remaining=max(FREE_SHIPPING_THRESHOLD - subtotal, Decimal("0")),
    )
