import json
from datetime import datetime, timedelta

import pytest

from kasir.core import CoreSettings, PosCore
from kasir.errors import DuplicateBarcode
from kasir.services.data_service import clear_all_data, export_data, import_data
from kasir.services.kv_store import StorageKeys
from kasir.services.reporting_service import ReportError, period_start
from kasir.services.sales_service import Payment
from kasir.validation import ValidationError


def _sell(core, product, quantity, method="qris"):
    core.cart.add_item(product, quantity)
    return core.commit(Payment(method), cashier_id="kasir-1")


def test_dashboard_figures(core, clock, make_product):
    teh = make_product(name="Teh", price=5000, cost=3000, stock=50)
    beras = make_product(name="Beras", price=70000, cost=60000, stock=5)

    _sell(core, teh, 4)
    clock.advance(hours=2)
    _sell(core, beras, 1)
    _sell(core, teh, 1)

    stats = core.dashboard("today")

    assert stats["transactions"] == 3
    assert stats["sales"] == 22000 + 77000 + 5500
    assert stats["profit"] == 4 * 2000 + 10000 + 2000
    assert stats["total_products"] == 2
    assert stats["low_stock_products"] == 1
    assert [p["name"] for p in stats["top_products"]] == ["Beras", "Teh"]
    assert stats["top_products"][1]["quantity"] == 5
    assert [h["hour"] for h in stats["peak_hours"]] == [12, 10]


def test_dashboard_period_window(core, clock, make_product):
    teh = make_product(price=5000, stock=50)
    _sell(core, teh, 1)
    clock.advance(days=3)

    assert core.dashboard("today")["transactions"] == 0
    assert core.dashboard("week")["transactions"] == 1
    with pytest.raises(ReportError):
        core.dashboard("decade")


def test_period_start_is_midnight(clock):
    assert period_start("today", clock()).hour == 0
    assert (clock() - period_start("month", clock())).days == 30


def test_export_then_import_restores_reference_data(core, store, make_product):
    product = make_product(name="Teh", stock=10)
    core.customers.add_customer({"name": "Bu Sari"})
    core.catalog.save_category("Minuman")
    _sell(core, product, 2)

    dump = export_data(store)
    data = json.loads(dump)
    assert [p["name"] for p in data["products"]] == ["Teh"]
    assert len(data["transactions"]) == 1

    clear_all_data(store)
    assert core.catalog.list_products() == []
    assert core.sync.pending() == []

    counts = import_data(store, dump)
    assert counts == {"products": 1, "customers": 1, "categories": 1, "discounts": 0}
    assert core.catalog.get_product(product.id).stock == 8
    assert core.ledger.list_transactions() == []
    assert core.sync.pending() == []


def test_import_rejects_bad_files_without_writing(core, store, make_product):
    make_product(name="Teh")
    before = store.get(StorageKeys.PRODUCTS)

    with pytest.raises(ValidationError):
        import_data(store, "not json")
    with pytest.raises(ValidationError):
        import_data(store, json.dumps({"customers": [{"name": "ok"}], "products": [{"id": "x"}]}))
    assert store.get(StorageKeys.PRODUCTS) == before
    assert core.customers.list_customers() == []


def test_period_start_uses_shop_local_midnight():
    wib = timedelta(hours=7)
    # 20:00 UTC is already 03:00 the next day in WIB
    now = datetime(2026, 3, 14, 20, 0)
    assert period_start("today", now, wib) == datetime(2026, 3, 14, 17, 0)
    assert period_start("week", now, wib) == datetime(2026, 3, 7, 17, 0)
    assert period_start("today", datetime(2026, 3, 14, 10, 30), wib) == datetime(2026, 3, 13, 17, 0)


def test_dashboard_hours_and_expenses_follow_local_time(store, remote, probe, clock):
    core = PosCore(store, settings=CoreSettings(utc_offset_minutes=420), remote=remote, probe=probe, clock=clock)
    teh = core.catalog.add_product({"name": "Teh", "barcode": "1", "price": 5000, "cost": 3000, "stock": 10})
    _sell(core, teh, 1)
    core.expenses.add_expense({"description": "Es batu", "amount": 1500})

    stats = core.dashboard("today")
    assert [h["hour"] for h in stats["peak_hours"]] == [17]
    assert stats["expenses"] == 1500
    assert stats["net_profit"] == 2000 - 1500


def _product_row(pid, barcode, **extra):
    row = {"id": pid, "name": f"Produk {pid}", "barcode": barcode, "price": 5000, "stock": 3}
    row.update(extra)
    return row


def test_import_rejects_negative_stock_without_writing(core, store, make_product):
    make_product(name="Teh")
    before = store.get(StorageKeys.PRODUCTS)

    with pytest.raises(ValidationError):
        import_data(store, json.dumps({"products": [_product_row("a", "111", stock=-5)]}))
    with pytest.raises(ValidationError):
        import_data(store, json.dumps({"products": [_product_row("a", "111", price=-1)]}))
    assert store.get(StorageKeys.PRODUCTS) == before


def test_import_rejects_duplicate_barcodes_without_writing(core, store):
    rows = [_product_row("a", "111"), _product_row("b", "111")]

    with pytest.raises(DuplicateBarcode):
        import_data(store, json.dumps({"products": rows, "customers": [{"id": "c1", "name": "Bu Sari"}]}))
    assert core.catalog.list_products() == []
    assert core.customers.list_customers() == []


def test_import_bad_discount_value_is_a_validation_error(core, store):
    discounts = [{"id": "d1", "name": "Promo", "type": "fixed", "value": "abc"}]

    with pytest.raises(ValidationError):
        import_data(store, json.dumps({"discounts": discounts}))
    assert core.discounts.list_discounts() == []


def test_import_writes_through_version_check(core, store):
    import_data(store, json.dumps({"products": [_product_row("a", "111")]}))
    _, first = store.get_versioned(StorageKeys.PRODUCTS)
    import_data(store, json.dumps({"products": [_product_row("a", "111"), _product_row("b", "222")]}))
    _, second = store.get_versioned(StorageKeys.PRODUCTS)

    assert second == first + 1
    assert [p.id for p in core.catalog.list_products()] == ["a", "b"]


def test_export_includes_books(core, store):
    core.expenses.add_expense({"description": "Listrik", "amount": 250000})
    core.kasbon.add_kasbon({"customer_name": "Pak Budi", "amount": 40000})

    data = json.loads(export_data(store))
    assert [e["description"] for e in data["expenses"]] == ["Listrik"]
    assert [k["customer_name"] for k in data["kasbon"]] == ["Pak Budi"]
    assert data["audit_logs"] == []
