from decimal import Decimal

import pytest

from kasir.errors import (
    CartInvalid,
    CustomerNotFound,
    InsufficientPayment,
    InvalidTransition,
    StorageFailure,
    TransactionNotFound,
)
from kasir.models.promotions import Discount, PERCENTAGE
from kasir.models.sales import STATUS_CANCELLED, STATUS_COMPLETED, STATUS_PENDING, SYNC_PENDING, Transaction
from kasir.services.kv_store import ANY_VERSION, StorageKeys
from kasir.services.sales_service import Payment, next_transaction_number
from kasir.validation import ValidationError


def _snapshot(core):
    return {
        "products": core.catalog.list_products(),
        "transactions": core.ledger.list_transactions(),
        "queue": [i.id for i in core.sync.pending()],
        "cart": core.cart.state(),
        "movements": core.catalog.list_stock_movements(),
    }


@pytest.fixture
def discounted_cart(core, make_product):
    """Cart totalling 118800 after a 10% discount and 10% tax."""
    product = make_product(name="Beras 5kg", price=40000, cost=30000, stock=10)
    core.cart.add_item(product, 3)
    core.cart.apply_cart_discount(Discount(
        id="promo-10", name="10% over 100k", type=PERCENTAGE, value=Decimal(10), min_purchase=100000,
    ))
    return product


def test_cash_commit_computes_change_and_decrements_stock(core, discounted_cart):
    transaction = core.commit(Payment("cash", 120000), cashier_id="kasir-1")

    assert transaction.total == 118800
    assert transaction.change == 1200
    assert transaction.discount == 12000
    assert transaction.tax == 10800
    assert transaction.discount_id == "promo-10"
    assert transaction.sync_status == SYNC_PENDING
    assert transaction.transaction_number.startswith("TRX-20260314-103000000-")
    assert core.catalog.get_product(discounted_cart.id).stock == 7
    assert core.ledger.list_transactions() == [transaction]
    assert core.cart.items() == []

    movements = core.catalog.list_stock_movements(discounted_cart.id)
    assert [(m.type, m.quantity, m.previous_stock, m.new_stock) for m in movements] == [("out", 3, 10, 7)]
    assert movements[0].reference == transaction.transaction_number


def test_commit_queues_transaction_for_sync(core, discounted_cart):
    before = len(core.sync.pending())
    transaction = core.commit(Payment("qris"), cashier_id="kasir-1")

    new_items = core.sync.pending()[before:]
    tables = [(i.type.value, i.table) for i in new_items]
    assert ("update", "products") in tables
    assert ("create", "stock_movements") in tables
    assert ("create", "transactions") in tables
    tx_item = next(i for i in new_items if i.table == "transactions")
    assert tx_item.record_id == transaction.id


def test_insufficient_cash_changes_nothing(core, discounted_cart):
    before = _snapshot(core)

    with pytest.raises(InsufficientPayment) as exc:
        core.commit(Payment("cash", 100000), cashier_id="kasir-1")
    assert exc.value.details == {"total": 118800, "amount_paid": 100000}
    assert _snapshot(core) == before


def test_invalid_cart_changes_nothing(core, make_product):
    product = make_product(stock=5)
    core.cart.add_item(product, 3)
    core.catalog.adjust_stock(product.id, 2)
    before = _snapshot(core)

    with pytest.raises(CartInvalid) as exc:
        core.commit(Payment("cash", 1_000_000), cashier_id="kasir-1")
    assert exc.value.violations == ["Kopi Susu: quantity 3 exceeds available stock 2"]
    assert _snapshot(core) == before


def test_empty_cart_cannot_commit(core):
    with pytest.raises(CartInvalid):
        core.commit(Payment("cash", 1000), cashier_id="kasir-1")
    assert core.ledger.list_transactions() == []


def test_unknown_payment_method_and_customer_rejected_before_writes(core, discounted_cart):
    before = _snapshot(core)
    with pytest.raises(ValidationError):
        core.commit(Payment("barter"), cashier_id="kasir-1")
    with pytest.raises(CustomerNotFound):
        core.commit(Payment("qris"), cashier_id="kasir-1", customer_id="ghost")
    assert _snapshot(core) == before


def test_non_cash_defaults_amount_paid_to_total(core, discounted_cart):
    transaction = core.commit(Payment("non-cash"), cashier_id="kasir-1")
    assert transaction.amount_paid == 118800
    assert transaction.change == 0


def test_customer_earns_points_and_spend(core, discounted_cart):
    customer = core.customers.add_customer({"name": "Bu Sari", "phone": "0812"})
    transaction = core.commit(Payment("cash", 118800), cashier_id="kasir-1", customer_id=customer.id)

    assert transaction.points_earned == 11
    updated = core.customers.get_customer(customer.id)
    assert updated.points == 11
    assert updated.total_spent == 118800


def test_transaction_keeps_item_snapshot(core, discounted_cart):
    transaction = core.commit(Payment("qris"), cashier_id="kasir-1")
    core.catalog.update_product(discounted_cart.id, {"name": "Beras Premium", "price": 45000})

    stored = core.ledger.get_transaction(transaction.id)
    assert stored.items[0].product.name == "Beras 5kg"
    assert stored.items[0].product.price == 40000


def test_storage_failure_surfaces(core, store, discounted_cart, monkeypatch):
    original = store.set

    def failing_set(key, value, expected_version=ANY_VERSION):
        if key == StorageKeys.TRANSACTIONS:
            raise StorageFailure("disk full", details={"key": key})
        return original(key, value, expected_version)

    monkeypatch.setattr(store, "set", failing_set)
    with pytest.raises(StorageFailure):
        core.commit(Payment("qris"), cashier_id="kasir-1")
    assert core.ledger.list_transactions() == []


def test_transaction_numbers_sort_by_time(clock):
    first = next_transaction_number(clock())
    clock.advance(milliseconds=5)
    second = next_transaction_number(clock())
    assert first[:-5] < second[:-5]


def test_payment_from_dict_validates_amount():
    assert Payment.from_dict({"payment_method": "cash", "amount_paid": 5000}) == Payment("cash", 5000)
    assert Payment.from_dict({"method": "qris"}) == Payment("qris", None)
    with pytest.raises(ValidationError):
        Payment.from_dict({"payment_method": "cash", "amount_paid": 10.5})
    with pytest.raises(ValidationError):
        Payment.from_dict({"payment_method": "cash", "amount_paid": -1})


def test_cancel_returns_stock_and_loyalty(core, discounted_cart):
    customer = core.customers.add_customer({"name": "Bu Sari"})
    transaction = core.commit(Payment("qris"), cashier_id="kasir-1", customer_id=customer.id)
    assert core.catalog.get_product(discounted_cart.id).stock == 7

    cancelled = core.cancel(transaction.id, cancelled_by="owner", reason="double scan")

    assert cancelled.status == STATUS_CANCELLED
    assert cancelled.total == transaction.total
    assert core.ledger.get_transaction(transaction.id).status == STATUS_CANCELLED
    assert core.catalog.get_product(discounted_cart.id).stock == 10
    restored = core.customers.get_customer(customer.id)
    assert (restored.points, restored.total_spent) == (0, 0)

    movements = core.catalog.list_stock_movements(discounted_cart.id)
    assert [(m.type, m.quantity) for m in movements] == [("out", 3), ("in", 3)]
    assert movements[-1].reference == transaction.transaction_number

    tail = core.sync.pending()[-1]
    assert (tail.type.value, tail.table, tail.record_id) == ("create", "audit_logs", core.audit.list_logs()[0].id)
    updates = [i for i in core.sync.pending() if i.table == "transactions" and i.type.value == "update"]
    assert [i.data["status"] for i in updates] == [STATUS_CANCELLED]
    assert core.dashboard("today")["transactions"] == 0


def test_cancel_returns_only_what_a_clamped_sale_took(core, make_product):
    product = make_product(stock=5)
    core.catalog.adjust_stock(product.id, 1)
    movements = core.catalog.apply_sale([(product.id, 3)], reference="TRX-CLAMP")
    assert movements[0].anomaly
    assert core.catalog.get_product(product.id).stock == 0

    core.ledger.append(_ledger_entry(core, "t-clamp", "TRX-CLAMP"))
    core.cancel("t-clamp", cancelled_by="owner")

    assert core.catalog.get_product(product.id).stock == 1


def _ledger_entry(core, transaction_id, number, status=STATUS_COMPLETED):
    return Transaction(
        id=transaction_id, transaction_number=number, items=(), subtotal=0, discount=0, tax=0,
        total=0, payment_method="qris", amount_paid=0, change=0, cashier_id="kasir-1",
        status=status, created_at=core.clock(),
    )


def test_status_transitions(core):
    core.ledger.append(_ledger_entry(core, "t-pending", "TRX-P", status=STATUS_PENDING))

    before, after = core.ledger.set_status("t-pending", STATUS_COMPLETED)
    assert (before.status, after.status) == (STATUS_PENDING, STATUS_COMPLETED)
    core.cancel("t-pending", cancelled_by="owner")

    with pytest.raises(InvalidTransition):
        core.ledger.set_status("t-pending", STATUS_COMPLETED)
    with pytest.raises(InvalidTransition):
        core.cancel("t-pending", cancelled_by="owner")
    with pytest.raises(ValidationError):
        core.ledger.set_status("t-pending", "refunded")
    with pytest.raises(TransactionNotFound):
        core.cancel("ghost", cancelled_by="owner")


def test_cancelling_a_pending_sale_leaves_stock_alone(core, make_product):
    product = make_product(stock=5)
    core.ledger.append(_ledger_entry(core, "t-pending", "TRX-P", status=STATUS_PENDING))

    core.cancel("t-pending", cancelled_by="owner")

    assert core.catalog.get_product(product.id).stock == 5
    assert core.catalog.list_stock_movements() == []
