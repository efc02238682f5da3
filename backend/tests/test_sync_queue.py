import pytest

from kasir.core import CoreSettings, PosCore
from kasir.models.sales import SYNC_FAILED, SYNC_SYNCED
from kasir.models.sync import SyncOperation, SyncTable
from kasir.services.kv_store import StorageKeys, dumps
from kasir.services.remote_backend import RemoteError
from kasir.services.sales_service import Payment
from kasir.services.sync_service import FLUSH_OK, FLUSH_PARTIAL, FLUSH_SKIPPED, SyncQueue
from kasir.validation import ValidationError


def _product(pid, **extra):
    data = {"id": pid, "name": f"Produk {pid}", "barcode": f"bc-{pid}", "price": 5000}
    data.update(extra)
    return data


@pytest.fixture
def queue(store, remote, probe, clock):
    return SyncQueue(store, remote, probe, max_attempts=3, clock=clock)


def _fail_on(record_id, operation="insert"):
    def hook(op, table, rid):
        if op == operation and rid == record_id:
            raise RemoteError(f"{op} {rid} rejected", status_code=500)
    return hook


def test_partial_failure_keeps_only_failed_item(queue, remote):
    for pid in ("p1", "p2", "p3"):
        queue.enqueue(SyncOperation.CREATE, SyncTable.PRODUCTS, _product(pid))
    remote.fail_with = _fail_on("p2")

    result = queue.flush()

    assert result.status == FLUSH_PARTIAL
    assert result.ok
    assert result.attempted == 3
    assert len(result.acked) == 2
    assert [f["error"] for f in result.failed] == ["insert p2 rejected"]
    remaining = queue.pending()
    assert [i.record_id for i in remaining] == ["p2"]
    assert remaining[0].attempts == 1
    assert remaining[0].last_error == "insert p2 rejected"
    assert set(remote.tables["products"]) == {"p1", "p3"}
    assert queue.last_sync_time() is None


def test_flush_preserves_enqueue_order(queue, remote):
    queue.enqueue("create", "products", _product("p1"))
    queue.enqueue("update", "products", _product("p1", price=6000))
    queue.enqueue("create", "customers", {"id": "c1", "name": "Bu Sari"})
    queue.enqueue("delete", "products", {"id": "p1", "name": "ignored"})
    remote.fail_with = _fail_on("p1", operation="insert")

    queue.flush()

    assert remote.calls == [
        ("insert", "products", "p1"),
        ("upsert", "products", "p1"),
        ("insert", "customers", "c1"),
        ("delete", "products", "p1"),
    ]
    assert [i.type for i in queue.pending()] == [SyncOperation.CREATE]


def test_successful_flush_empties_queue_and_records_time(queue, remote, clock):
    queue.enqueue("create", "products", _product("p1"))
    result = queue.flush()

    assert result.status == FLUSH_OK
    assert queue.pending() == []
    assert queue.last_sync_time() == clock()
    assert remote.tables["products"]["p1"]["price"] == 5000


def test_offline_flush_is_skipped_without_side_effects(queue, remote, probe, store):
    queue.enqueue("create", "products", _product("p1"))
    probe.set_online(False)
    raw_before = store.get(StorageKeys.SYNC_QUEUE)

    result = queue.flush()

    assert result.status == FLUSH_SKIPPED
    assert remote.calls == []
    assert store.get(StorageKeys.SYNC_QUEUE) == raw_before
    assert store.get(StorageKeys.LAST_SYNC) is None


def test_no_remote_configured_skips(store, clock):
    queue = SyncQueue(store, None, clock=clock)
    queue.enqueue("create", "products", _product("p1"))
    assert queue.flush().status == FLUSH_SKIPPED
    assert len(queue.pending()) == 1


def test_replaying_an_acked_item_is_idempotent(queue, remote, monkeypatch):
    queue.enqueue("create", "products", _product("p1"))

    # Crash between the remote ack and the local removal
    monkeypatch.setattr(queue, "_remove", lambda item_id: None)
    queue.flush()
    once = {k: dict(v) for k, v in remote.tables["products"].items()}
    monkeypatch.undo()

    queue.flush()
    assert remote.tables["products"] == once
    assert queue.pending() == []


def test_items_enqueued_mid_flush_wait_for_next_pass(queue, remote):
    queue.enqueue("create", "products", _product("p1"))
    queue.enqueue("create", "products", _product("p2"))

    def enqueue_during_call(op, table, rid):
        if rid == "p1":
            queue.enqueue("create", "products", _product("p9"))

    remote.fail_with = enqueue_during_call
    result = queue.flush()

    assert result.attempted == 2
    assert [i.record_id for i in queue.pending()] == ["p9"]
    remote.fail_with = None
    queue.flush()
    assert queue.pending() == []
    assert set(remote.tables["products"]) == {"p1", "p2", "p9"}


def test_connection_lost_mid_flush_stops_issuing_calls(queue, remote, probe):
    for pid in ("p1", "p2", "p3"):
        queue.enqueue("create", "products", _product(pid))

    def drop_connection(op, table, rid):
        probe.set_online(False)

    remote.fail_with = drop_connection
    result = queue.flush()

    assert result.interrupted
    assert result.status == FLUSH_PARTIAL
    assert remote.calls == [("insert", "products", "p1")]
    assert [i.record_id for i in queue.pending()] == ["p2", "p3"]


def test_item_is_dead_lettered_after_max_attempts(queue, remote):
    queue.enqueue("create", "products", _product("bad"))
    queue.enqueue("create", "products", _product("good"))
    remote.fail_with = _fail_on("bad")

    for _ in range(3):
        queue.flush()

    assert queue.pending() == []
    dead = queue.dead_letters()
    assert [d.record_id for d in dead] == ["bad"]
    assert dead[0].attempts == 3

    remote.fail_with = None
    assert queue.requeue_dead_letters() == 1
    assert queue.dead_letters() == []
    assert queue.pending()[0].attempts == 0
    queue.flush()
    assert set(remote.tables["products"]) == {"bad", "good"}


def test_transaction_sync_status_follows_replay(store, remote, probe, clock):
    core = PosCore(store, settings=CoreSettings(sync_max_attempts=1), remote=remote, probe=probe, clock=clock)
    product = core.catalog.add_product({"name": "Teh", "barcode": "1", "price": 5000, "stock": 10})

    core.cart.add_item(product, 1)
    ok = core.commit(Payment("qris"), cashier_id="kasir-1")
    core.sync.flush()
    assert core.ledger.get_transaction(ok.id).sync_status == SYNC_SYNCED

    core.cart.add_item(product, 1)
    bad = core.commit(Payment("qris"), cashier_id="kasir-1")
    remote.fail_with = _fail_on(bad.id)
    core.sync.flush()
    assert core.ledger.get_transaction(bad.id).sync_status == SYNC_FAILED
    assert [d.record_id for d in core.sync.dead_letters()] == [bad.id]


def test_enqueue_rejects_unknown_shapes(queue):
    with pytest.raises(ValidationError):
        queue.enqueue("merge", "products", _product("p1"))
    with pytest.raises(ValidationError):
        queue.enqueue("create", "widgets", {"id": "w1"})
    with pytest.raises(ValidationError):
        queue.enqueue("create", "products", {"name": "no id"})
    with pytest.raises(ValidationError):
        queue.enqueue("create", "stock_movements", {"id": "m1"})
    assert queue.pending() == []

    item = queue.enqueue("delete", "products", _product("p1"))
    assert item.data == {"id": "p1"}


def test_item_ids_are_unique_and_ordered(queue):
    items = [queue.enqueue("create", "products", _product(f"p{n}")) for n in range(5)]
    assert len({i.id for i in items}) == 5
    assert [i.sequence for i in items] == [1, 2, 3, 4, 5]
    assert [i.id for i in queue.pending()] == [i.id for i in items]


def test_unknown_table_in_stored_queue_is_skipped(store, queue, remote):
    store.set(StorageKeys.SYNC_QUEUE, dumps([
        {"id": "1-000001", "type": "create", "table": "widgets", "data": {"id": "w1"}},
        {"id": "1-000002", "type": "create", "table": "products", "data": _product("p1")},
    ]))

    result = queue.flush()

    assert result.skipped == ["1-000001"]
    assert result.acked == ["1-000002"]
    assert queue.pending() == []
    assert remote.calls == [("insert", "products", "p1")]


def test_pull_merges_but_keeps_dirty_local_records(core, remote):
    local = core.catalog.add_product({"name": "Teh lokal", "barcode": "1", "price": 5000})
    remote.tables["products"] = {
        local.id: _product(local.id, name="Teh remote"),
        "r1": _product("r1", name="Kopi remote"),
        "broken": {"id": "broken"},
    }

    result = core.sync.pull("products")

    assert result.received == 3
    assert result.merged == 1
    assert result.rejected == 1
    assert result.kept_local == [local.id]
    names = {p.id: p.name for p in core.catalog.list_products()}
    assert names == {local.id: "Teh lokal", "r1": "Kopi remote"}


def test_pull_rejects_non_reference_tables(core):
    with pytest.raises(ValidationError):
        core.sync.pull("transactions")


def test_pull_rejects_negative_amounts_and_taken_barcodes(core, remote):
    local = core.catalog.add_product({"name": "Gula", "barcode": "222", "price": 5000, "stock": 4})
    core.sync.flush()
    remote.tables["products"] = {
        "r1": _product("r1", barcode="222", stock=3),
        "r2": _product("r2", stock=-7),
        "r3": _product("r3", price=-1),
        "r4": _product("r4", barcode="444"),
        "r5": _product("r5", barcode="444"),
    }

    result = core.sync.pull("products")

    assert result.received == 5
    assert result.merged == 1
    assert result.rejected == 4
    stored = {p.id: (p.barcode, p.stock) for p in core.catalog.list_products()}
    assert stored == {local.id: ("222", 4), "r4": ("444", 0)}


def test_pull_counts_unparseable_discount_rows(core, remote):
    remote.tables["discounts"] = {
        "d1": {"id": "d1", "name": "Rusak", "type": "fixed", "value": "abc"},
        "d2": {"id": "d2", "name": "Hemat", "type": "fixed", "value": "2000"},
    }

    result = core.sync.pull("discounts")

    assert result.rejected == 1
    assert result.merged == 1
    assert [d.id for d in core.discounts.list_discounts()] == ["d2"]


def test_enqueue_rejects_unparseable_discount_payload(queue):
    with pytest.raises(ValidationError):
        queue.enqueue("create", "discounts", {"id": "d1", "name": "Rusak", "type": "fixed", "value": "abc"})
    assert queue.pending() == []


def test_settled_transactions_are_reported_through_callback(store, remote, probe, clock):
    settled = []
    queue = SyncQueue(
        store, remote, probe, max_attempts=1, clock=clock,
        on_transaction_status=lambda tid, status: settled.append((tid, status)),
    )
    queue.enqueue("create", "products", _product("p1"))
    queue.enqueue("create", "transactions", {
        "id": "t1", "transaction_number": "TRX-1", "subtotal": 0, "total": 0, "payment_method": "qris",
    })
    queue.enqueue("create", "transactions", {
        "id": "t2", "transaction_number": "TRX-2", "subtotal": 0, "total": 0, "payment_method": "qris",
    })
    remote.fail_with = _fail_on("t2")

    queue.flush()

    assert settled == [("t1", SYNC_SYNCED), ("t2", SYNC_FAILED)]
