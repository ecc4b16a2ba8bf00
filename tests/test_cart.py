from decimal import Decimal

import pytest

from cart import Cart, CartLine, CartStore, MemoryCartStore
from errors import ValidationFailed

HEADPHONES = {"product_id": "p1", "name": "Headphones", "price": 45.0, "image_url": "/h.jpg", "in_stock": True}
CABLE = {"product_id": "p2", "name": "Cable", "price": 30.0}


@pytest.mark.parametrize("quantities", [[1], [1, 1], [2, 3, 5], [10, 1, 1, 1]])
def test_adding_same_item_merges_quantities(quantities):
    cart = Cart()
    for quantity in quantities:
        cart.add_item(HEADPHONES, quantity, variant="Black")
    assert len(cart) == 1
    assert cart.find("p1", "Black").quantity == sum(quantities)


def test_variants_are_separate_lines():
    cart = Cart()
    cart.add_item(HEADPHONES, 1, variant="Black")
    cart.add_item(HEADPHONES, 2, variant="Silver")
    cart.add_item(HEADPHONES, 1)
    assert len(cart) == 3
    assert cart.find("p1", "Silver").quantity == 2
    assert cart.find("p1").quantity == 1


def test_add_rejects_quantity_below_one():
    cart = Cart()
    with pytest.raises(ValidationFailed):
        cart.add_item(HEADPHONES, 0)
    assert len(cart) == 0


def test_decrease_stops_at_one_and_keeps_line():
    cart = Cart()
    cart.add_item(HEADPHONES, 2)
    cart.decrease("p1")
    cart.decrease("p1")
    cart.decrease("p1")
    assert cart.find("p1").quantity == 1
    assert len(cart) == 1


def test_increase_and_remove():
    cart = Cart()
    cart.add_item(HEADPHONES, 1)
    cart.add_item(CABLE, 1)
    cart.increase("p1")
    assert cart.find("p1").quantity == 2
    cart.remove_item("p1")
    assert cart.find("p1") is None
    assert len(cart) == 1


def test_remove_missing_line_is_noop():
    cart = Cart()
    cart.add_item(CABLE, 1)
    cart.remove_item("nope")
    cart.remove_item("p2", variant="Red")
    assert len(cart) == 1


def test_totals_for_checkout_example():
    cart = Cart(tax_rate=Decimal("0.10"), shipping_cost=Decimal("9.99"))
    cart.add_item(HEADPHONES, 2)
    cart.add_item(CABLE, 1)
    assert cart.subtotal() == Decimal("120.00")
    assert cart.tax() == Decimal("12.00")
    assert cart.shipping_cost() == Decimal("9.99")
    assert cart.grand_total() == Decimal("141.99")


def test_totals_are_exact_for_cent_prices():
    cart = Cart(tax_rate=Decimal("0.10"), shipping_cost=Decimal("9.99"))
    cart.add_item({"product_id": "a", "name": "A", "price": 19.99}, 3)
    cart.add_item({"product_id": "b", "name": "B", "price": 0.1}, 3)
    assert cart.subtotal() == Decimal("60.27")
    assert cart.subtotal() == sum(line.price * line.quantity for line in cart)
    assert cart.tax() == Decimal("6.03")
    assert cart.grand_total() == cart.subtotal() + cart.tax() + cart.shipping_cost()


def test_subtotal_uses_line_snapshot_price():
    cart = Cart()
    cart.add_item(HEADPHONES, 1)
    cart.add_item({**HEADPHONES, "price": 999.0}, 1)
    # the first snapshot wins; later adds only change quantity
    assert cart.subtotal() == Decimal("90.00")


def test_clear_empties_cart():
    cart = Cart()
    cart.add_item(HEADPHONES, 1)
    cart.clear()
    assert len(cart) == 0
    assert cart.subtotal() == Decimal("0.00")


def test_cart_store_is_an_interface():
    with pytest.raises(TypeError):
        CartStore()


def test_mutations_are_persisted_and_reloaded():
    store = MemoryCartStore()
    cart = Cart(store=store, key="session-1")
    cart.add_item(HEADPHONES, 2, variant="Black")
    cart.add_item(CABLE, 1)
    cart.decrease("p1", "Black")

    restored = Cart.load(store, "session-1")
    assert [(line.product_id, line.variant, line.quantity) for line in restored] == [
        ("p1", "Black", 1),
        ("p2", None, 1),
    ]
    assert restored.subtotal() == cart.subtotal()


def test_store_failure_does_not_break_mutation(caplog):
    class BrokenStore(CartStore):
        def save(self, key, lines):
            raise IOError("disk full")

        def load(self, key):
            return []

    cart = Cart(store=BrokenStore(), key="s")
    cart.add_item(HEADPHONES, 1)
    assert cart.find("p1").quantity == 1
    assert "Failed to persist cart" in caplog.text


def test_summary_serializes_prices_as_numbers():
    cart = Cart(tax_rate=Decimal("0.10"), shipping_cost=Decimal("9.99"))
    cart.add_item(HEADPHONES, 2)
    summary = cart.summary()
    assert summary["items"][0]["price"] == 45.0
    assert summary["item_count"] == 2
    assert summary["total"] == 108.99


def test_cart_line_requires_positive_quantity():
    with pytest.raises(ValueError):
        CartLine(product_id="p", name="x", price=1, quantity=0)
