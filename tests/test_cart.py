"""
Tests for cart models and pricing
"""

import pytest
from decimal import Decimal

from storefront.cart import CartResult, CartScope, LineItem, compute_totals
from storefront.cart.pricing import compute_shipping, compute_tax
from storefront.constants import FREE_SHIPPING_THRESHOLD, SHIPPING_FLAT
from storefront.errors import ERROR_CART_FULL, CartError
from storefront.services import Identity, Product


def make_item(product_id="tee-black", size="M", quantity=1, price=500, original_price=None):
    return LineItem(
        product_id=product_id,
        name="Test",
        size=size,
        quantity=quantity,
        price=price,
        original_price=original_price if original_price is not None else price,
    )


class TestLineItem:
    """Tests for LineItem dataclass."""

    def test_create_line_item(self):
        """Test creating a line item normalizes prices and stamps added_at."""
        item = make_item(price=499.99)

        assert item.price == Decimal("499.99")
        assert item.key == ("tee-black", "M")
        assert item.added_at != ""

    def test_from_product_uses_sale_price(self):
        """Sale price is captured, regular price kept as original."""
        product = Product(id="hoodie", name="Hoodie", regular_price=1299, sale_price=999)

        item = LineItem.from_product(product, "L", 2)

        assert item.price == Decimal("999")
        assert item.original_price == Decimal("1299")
        assert item.line_total == Decimal("1998")
        assert item.savings == Decimal("600")

    def test_from_product_without_sale(self):
        product = Product(id="tee", name="Tee", regular_price=500, sale_price=0)

        item = LineItem.from_product(product, "S", 1)

        assert item.price == Decimal("500")
        assert item.savings == Decimal("0")

    def test_to_dict_uses_storefront_shape(self):
        """Test serialization keeps the browser's camelCase keys."""
        item = make_item(price=500, original_price=650)

        data = item.to_dict()

        assert data["productId"] == "tee-black"
        assert data["originalPrice"] == 650
        assert data["price"] == 500
        assert "addedAt" in data

    def test_from_dict_accepts_snake_case(self):
        data = {
            "product_id": "tee-black",
            "name": "Tee",
            "size": "L",
            "quantity": 3,
            "price": 450.5,
            "original_price": 500,
            "added_at": "2025-01-01T00:00:00+00:00",
        }

        item = LineItem.from_dict(data)

        assert item.quantity == 3
        assert item.price == Decimal("450.5")
        assert item.added_at == "2025-01-01T00:00:00+00:00"

    def test_from_dict_rejects_zero_quantity(self):
        with pytest.raises(ValueError):
            LineItem.from_dict({"productId": "x", "size": "M", "quantity": 0, "price": 1})

    def test_from_dict_requires_price(self):
        with pytest.raises(KeyError):
            LineItem.from_dict({"productId": "x", "size": "M", "quantity": 1})


class TestPricing:
    """Tests for compute_totals."""

    def test_empty_cart(self):
        totals = compute_totals([])

        assert totals.subtotal == 0
        assert totals.tax == 0
        assert totals.total_item_count == 0
        assert totals.free_shipping_remaining == FREE_SHIPPING_THRESHOLD

    def test_free_shipping_at_threshold(self):
        """500 x 2 = 1000: free shipping, 18% tax."""
        totals = compute_totals([make_item(quantity=2, price=500)])

        assert totals.subtotal == Decimal("1000")
        assert totals.shipping == 0
        assert totals.tax == Decimal("180")
        assert totals.total == Decimal("1180")
        assert totals.free_shipping_remaining == 0

    def test_flat_shipping_below_threshold(self):
        totals = compute_totals([make_item(quantity=1, price=500)])

        assert totals.shipping == SHIPPING_FLAT
        assert totals.tax == Decimal("90")
        assert totals.total == Decimal("689")
        assert totals.free_shipping_remaining == Decimal("500")

    def test_tax_rounds_half_up_to_whole_rupees(self):
        # 2.5 * 0.18 = 0.45 -> 0 ; 25 * 0.18 = 4.5 -> 5
        assert compute_tax(Decimal("2.5")) == Decimal("0")
        assert compute_tax(Decimal("25")) == Decimal("5")
        assert compute_tax(Decimal("999.99")) == Decimal("180")

    def test_shipping_boundary(self):
        assert compute_shipping(Decimal("999.99")) == SHIPPING_FLAT
        assert compute_shipping(Decimal("1000")) == 0

    def test_discount_and_counts(self):
        items = [
            make_item("hoodie", "M", quantity=2, price=999, original_price=1299),
            make_item("tee", "S", quantity=3, price=500),
        ]

        totals = compute_totals(items)

        assert totals.subtotal == Decimal("3498")
        assert totals.discount == Decimal("600")
        assert totals.total_item_count == 5

    def test_recompute_is_idempotent(self):
        items = [make_item(quantity=3, price=333.33)]

        assert compute_totals(items) == compute_totals(items)


class TestCartScope:
    """Tests for scope keys."""

    def test_guest_scope(self):
        scope = CartScope.guest()

        assert scope.is_guest
        assert scope.scope_key == "guest"
        assert scope.same_owner(None)

    def test_user_scope_keyed_by_email(self):
        scope = CartScope.for_identity(Identity(id="u1", email="a@x.com"))

        assert scope.scope_key == "user:a@x.com"
        assert scope.fallback_key == "fallback:user:a@x.com"
        assert scope.same_owner(Identity(id="u1"))
        assert not scope.same_owner(None)


class TestCartResult:
    def test_failure_uses_default_message(self):
        result = CartResult.failure(CartError.CART_FULL)

        assert not result
        assert result.message == ERROR_CART_FULL

    def test_degraded_success(self):
        result = CartResult.success(warning="saved locally")

        assert result.ok
        assert result.degraded
        assert result.error is CartError.PERSISTENCE_FAILURE

    def test_plain_success_has_no_error(self):
        result = CartResult.success("done")

        assert not result.degraded
        assert result.error is None
