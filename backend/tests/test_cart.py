from decimal import Decimal

import pytest

from kasir.errors import InsufficientStock
from kasir.models.promotions import Discount, PERCENTAGE
from kasir.services.cart_service import CartState
from kasir.validation import ValidationError


TEN_PERCENT_OVER_100K = Discount(
    id="promo-10", name="10% over 100k", type=PERCENTAGE, value=Decimal(10), min_purchase=100000,
)


def _line_sum(cart):
    return sum(i.product.price * i.quantity - i.discount for i in cart.items())


def test_add_then_overdraw_leaves_quantity(core, make_product):
    product = make_product(price=10000, cost=6000, stock=5)

    core.cart.add_item(product, 3)
    assert core.cart.subtotal() == 30000

    with pytest.raises(InsufficientStock) as exc:
        core.cart.set_quantity(product.id, 6)
    assert exc.value.details == {"product_id": product.id, "requested_quantity": 6, "available": 5}
    assert core.cart.quantity_of(product.id) == 3
    assert core.cart.subtotal() == 30000


def test_add_item_checks_combined_quantity(core, make_product):
    product = make_product(stock=5)
    core.cart.add_item(product, 4)
    before = core.cart.state()

    with pytest.raises(InsufficientStock):
        core.cart.add_item(product, 2)
    assert core.cart.state() == before

    core.cart.add_item(product, 1)
    assert core.cart.quantity_of(product.id) == 5
    assert len(core.cart.items()) == 1


def test_add_item_rejects_non_positive_quantity(core, make_product):
    product = make_product()
    with pytest.raises(ValidationError):
        core.cart.add_item(product, 0)
    assert core.cart.items() == []


def test_subtotal_never_drifts_from_lines(core, make_product):
    a = make_product(name="Teh", price=5500, stock=20)
    b = make_product(name="Roti", price=12000, stock=3)

    steps = [
        lambda: core.cart.add_item(a, 2),
        lambda: core.cart.add_item(b, 1),
        lambda: core.cart.apply_item_discount(a.id, 1000),
        lambda: core.cart.set_quantity(a.id, 5),
        lambda: core.cart.add_item(b, 2),
        lambda: core.cart.set_quantity(b.id, 1),
        lambda: core.cart.remove_item(a.id),
        lambda: core.cart.remove_item(a.id),
        lambda: core.cart.add_item(a, 1),
    ]
    for step in steps:
        step()
        assert core.cart.subtotal() == _line_sum(core.cart)

    assert core.cart.subtotal() == 12000 + 5500


def test_line_discount_is_clamped_and_follows_quantity(core, make_product):
    product = make_product(price=10000, stock=5)
    core.cart.add_item(product, 2)

    item = core.cart.apply_item_discount(product.id, 50000)
    assert item.discount == 20000
    assert item.subtotal == 0

    item = core.cart.set_quantity(product.id, 1)
    assert item.discount == 10000

    item = core.cart.apply_item_discount(product.id, -5)
    assert item.discount == 0


def test_set_quantity_zero_removes_and_absent_is_noop(core, make_product):
    product = make_product()
    core.cart.add_item(product, 2)

    assert core.cart.set_quantity("missing", 1) is None
    assert core.cart.apply_item_discount("missing", 100) is None
    assert core.cart.set_quantity(product.id, 0) is None
    assert core.cart.items() == []


def test_price_is_snapshotted_when_added(core, make_product):
    product = make_product(price=10000, stock=10)
    core.cart.add_item(product, 1)
    core.catalog.update_product(product.id, {"price": 15000})

    core.cart.add_item(product, 1)
    assert core.cart.items()[0].product.price == 10000
    assert core.cart.subtotal() == 20000


def test_totals_with_discount_applied(core, make_product):
    product = make_product(price=40000, stock=10)
    core.cart.add_item(product, 3)
    core.cart.apply_cart_discount(TEN_PERCENT_OVER_100K)

    totals = core.cart.totals()
    assert totals.subtotal == 120000
    assert totals.discount == 12000
    assert totals.taxable_base == 108000
    assert totals.tax == 10800
    assert totals.total == 118800


def test_totals_with_min_purchase_unmet(core, make_product):
    product = make_product(price=25000, stock=10)
    core.cart.add_item(product, 2)
    core.cart.apply_cart_discount(TEN_PERCENT_OVER_100K)

    totals = core.cart.totals()
    assert totals.subtotal == 50000
    assert totals.discount == 0
    assert totals.tax == 5000
    assert totals.total == 55000


def test_validate_reports_each_line(core, make_product):
    assert core.cart.validate().violations == ["Cart is empty"]

    ok = make_product(name="Gula", stock=10)
    short = make_product(name="Beras", stock=5)
    gone = make_product(name="Minyak", stock=5)
    core.cart.add_item(ok, 1)
    core.cart.add_item(short, 4)
    core.cart.add_item(gone, 1)
    core.catalog.adjust_stock(short.id, 2)
    core.catalog.delete_product(gone.id)

    result = core.cart.validate()
    assert not result.ok
    assert result.violations == [
        "Beras: quantity 4 exceeds available stock 2",
        "Minyak: no longer in the catalog",
    ]


def test_clear_drops_lines_and_discount(core, make_product):
    core.cart.add_item(make_product(), 1)
    core.cart.apply_cart_discount(TEN_PERCENT_OVER_100K)
    core.cart.clear()
    assert core.cart.state() == CartState()


def test_legacy_cart_layout_is_readable():
    state = CartState.from_dict([
        {"product": {"id": "p1", "name": "Teh", "barcode": "1", "price": 5000}, "quantity": 2},
    ])
    assert state.items[0].subtotal == 10000
    assert state.discount is None


@pytest.mark.parametrize("price,quantity,percent", [
    (12345, 1, 10),
    (3333, 3, 15),
    (999, 7, 12.5),
    (5, 1, 50),
])
def test_receipt_figures_add_up(core, make_product, price, quantity, percent):
    product = make_product(price=price, stock=quantity)
    core.cart.add_item(product, quantity)
    core.cart.apply_cart_discount(Discount(
        id="promo", name="promo", type=PERCENTAGE, value=Decimal(str(percent)),
    ))

    totals = core.cart.totals()
    assert totals.taxable_base == totals.subtotal - totals.discount
    assert totals.subtotal - totals.discount + totals.tax == totals.total


def test_half_unit_discount_rounds_up_and_total_comes_from_exact_figures(core, make_product):
    product = make_product(price=12345, stock=1)
    core.cart.add_item(product, 1)
    core.cart.apply_cart_discount(Discount(id="promo", name="promo", type=PERCENTAGE, value=Decimal(10)))

    totals = core.cart.totals()
    assert totals.to_dict() == {
        "subtotal": 12345,
        "discount": 1235,
        "taxable_base": 11110,
        "tax": 1112,
        "total": 12222,
        "item_count": 1,
    }
