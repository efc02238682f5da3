"""
Local-first sync queue.

Invariants:
- enqueue() only appends and never touches the network.
- flush() replays a snapshot of the queue taken when it starts, strictly in
  sequence order. Each item is an independent remote call: a failure is
  recorded on that item and processing moves on to the next one.
- An item leaves the queue only after its own remote call succeeded (or it
  is dead-lettered after SYNC_MAX_ATTEMPTS failures). Removal re-reads the
  queue and drops that id alone, so items appended mid-flush survive and are
  replayed by the next flush.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable

from ..errors import DuplicateBarcode, SyncItemFailure
from ..models.customers import Customer
from ..models.inventory import Category, Product
from ..models.promotions import Discount
from ..models.sales import SYNC_SYNCED, SYNC_FAILED
from ..models.sync import (
    RECORD_TYPES,
    SyncOperation,
    SyncQueueItem,
    SyncTable,
    parse_table,
)
from ..time_utils import utcnow, now_millis, to_utc_z, parse_iso_datetime
from ..validation import ValidationError
from .connectivity import ReachabilityProbe, StaticReachabilityProbe
from .kv_store import Collection, KeyValueStore, StorageKeys, record_list
from .products_service import check_product_record, ensure_barcode_free
from .remote_backend import RemoteBackend

logger = logging.getLogger(__name__)

FLUSH_SKIPPED = "skipped"
FLUSH_OK = "ok"
FLUSH_PARTIAL = "partial"

# Reference data that may be pulled from the backend into the local store
PULLABLE = {
    SyncTable.PRODUCTS: (StorageKeys.PRODUCTS, Product),
    SyncTable.CUSTOMERS: (StorageKeys.CUSTOMERS, Customer),
    SyncTable.DISCOUNTS: (StorageKeys.DISCOUNTS, Discount),
    SyncTable.CATEGORIES: (StorageKeys.CATEGORIES, Category),
}

# Per-record checks a pulled row must pass before it is merged
PULL_CHECKS = {
    SyncTable.PRODUCTS: check_product_record,
}


@dataclass
class QueueState:
    next_sequence: int = 1
    items: list[SyncQueueItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "next_sequence": self.next_sequence,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data) -> "QueueState":
        # A bare list is the layout written before sequence numbers existed
        if isinstance(data, list):
            items = [SyncQueueItem.from_dict(dict(raw, sequence=i + 1)) if "sequence" not in raw
                     else SyncQueueItem.from_dict(raw) for i, raw in enumerate(data)]
            return cls(next_sequence=len(items) + 1, items=items)
        items = [SyncQueueItem.from_dict(raw) for raw in data.get("items", [])]
        items.sort(key=lambda item: item.sequence)
        return cls(next_sequence=int(data.get("next_sequence") or len(items) + 1), items=items)


@dataclass
class FlushResult:
    status: str
    attempted: int = 0
    acked: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    dead_lettered: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    interrupted: bool = False
    last_sync: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.status != FLUSH_SKIPPED

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "attempted": self.attempted,
            "acked": list(self.acked),
            "failed": list(self.failed),
            "dead_lettered": list(self.dead_lettered),
            "skipped": list(self.skipped),
            "interrupted": self.interrupted,
            "last_sync": to_utc_z(self.last_sync),
        }


@dataclass
class PullResult:
    table: str
    skipped: bool = False
    received: int = 0
    merged: int = 0
    kept_local: list[str] = field(default_factory=list)
    rejected: int = 0

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "skipped": self.skipped,
            "received": self.received,
            "merged": self.merged,
            "kept_local": list(self.kept_local),
            "rejected": self.rejected,
        }


def _payload(record) -> dict:
    if hasattr(record, "to_dict"):
        return record.to_dict()
    if isinstance(record, dict):
        return dict(record)
    raise ValidationError("sync payload must be a record or a dict")


class SyncQueue:
    def __init__(
        self,
        store: KeyValueStore,
        remote: RemoteBackend | None = None,
        probe: ReachabilityProbe | None = None,
        *,
        max_attempts: int = 5,
        write_attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
        on_transaction_status: Callable[[str, str], object] | None = None,
    ):
        self.store = store
        self.remote = remote
        self.probe = probe or StaticReachabilityProbe(online=remote is not None)
        self.max_attempts = max_attempts
        self.write_attempts = write_attempts
        self.clock = clock
        # Called with (transaction_id, sync_status) once a transaction item settles
        self.on_transaction_status = on_transaction_status
        self._queue: Collection[QueueState] = Collection(
            store,
            StorageKeys.SYNC_QUEUE,
            decode=QueueState.from_dict,
            encode=lambda state: state.to_dict(),
            default=QueueState,
            attempts=write_attempts,
        )
        self._dead = record_list(store, StorageKeys.SYNC_DEAD_LETTERS, SyncQueueItem, attempts=write_attempts)
        self._last_sync: Collection[datetime | None] = Collection(
            store,
            StorageKeys.LAST_SYNC,
            decode=parse_iso_datetime,
            encode=to_utc_z,
            default=lambda: None,
            attempts=write_attempts,
        )

    # ---- producer side -------------------------------------------------

    def enqueue(self, type, table, payload) -> SyncQueueItem:
        """Append one mutation. Durable locally, independent of network state."""
        try:
            operation = SyncOperation(type)
        except ValueError:
            raise ValidationError(f"unknown sync operation: {type}")
        record_table = parse_table(table)
        if record_table is None:
            raise ValidationError(f"unknown sync table: {table}")

        data = _payload(payload)
        if data.get("id") in (None, ""):
            raise ValidationError("sync payload requires an id")
        if operation is SyncOperation.DELETE:
            data = {"id": str(data["id"])}
        else:
            # Reject payloads the remote could never accept for this table
            try:
                RECORD_TYPES[record_table].from_dict(data)
            except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
                raise ValidationError(f"invalid {record_table.value} payload: {exc}")

        timestamp = self.clock()
        millis = now_millis()

        def _append(state: QueueState):
            item = SyncQueueItem(
                id=f"{millis:013d}-{state.next_sequence:06d}",
                sequence=state.next_sequence,
                type=operation,
                table=record_table.value,
                data=data,
                timestamp=timestamp,
            )
            return QueueState(state.next_sequence + 1, state.items + [item]), item

        return self._queue.mutate(_append)

    # ---- inspection ----------------------------------------------------

    def pending(self) -> list[SyncQueueItem]:
        return list(self._queue.load().items)

    def dead_letters(self) -> list[SyncQueueItem]:
        return self._dead.load()

    def last_sync_time(self) -> datetime | None:
        return self._last_sync.load()

    def requeue_dead_letters(self) -> int:
        """Move every dead-lettered item back to the tail of the queue."""
        dead = self._dead.load()
        if not dead:
            return 0

        def _append(state: QueueState):
            items = list(state.items)
            sequence = state.next_sequence
            for item in dead:
                items.append(replace(item, sequence=sequence, attempts=0, last_error=None))
                sequence += 1
            return QueueState(sequence, items), None

        self._queue.mutate(_append)
        dead_ids = {item.id for item in dead}
        self._dead.mutate(lambda current: ([d for d in current if d.id not in dead_ids], None))
        return len(dead)

    # ---- consumer side -------------------------------------------------

    def flush(self) -> FlushResult:
        if self.remote is None or not self.probe.is_online():
            logger.info("No connection, skipping sync")
            return FlushResult(status=FLUSH_SKIPPED)

        snapshot = self.pending()
        result = FlushResult(status=FLUSH_OK)
        if snapshot:
            logger.info("Syncing %d queued items", len(snapshot))

        for index, item in enumerate(snapshot):
            if index > 0 and not self.probe.is_online():
                logger.warning("Connection lost mid-sync; %d items left queued", len(snapshot) - index)
                result.interrupted = True
                break

            result.attempted += 1
            try:
                replayed = self._replay(item)
            except Exception as exc:  # isolate every item from its siblings
                failure = SyncItemFailure(item.id, str(exc) or exc.__class__.__name__)
                logger.warning(
                    "Sync item %s (%s %s) failed: %s",
                    item.id, item.type.value, item.table, failure.message,
                )
                self._record_failure(item, failure, result)
                continue

            self._remove(item.id)
            if replayed:
                result.acked.append(item.id)
                if item.record_table is SyncTable.TRANSACTIONS and item.type is not SyncOperation.DELETE:
                    self._mark_transaction(item.record_id, SYNC_SYNCED)
            else:
                result.skipped.append(item.id)

        if result.failed or result.interrupted:
            result.status = FLUSH_PARTIAL
        else:
            now = self.clock()
            self._last_sync.replace(now)
            result.last_sync = now
            logger.info("Sync completed successfully")
        return result

    def _replay(self, item: SyncQueueItem) -> bool:
        """Issue the remote call for one item. False means skipped as unknown."""
        table = item.record_table
        if table is None:
            logger.warning("Skipping sync item %s for unknown table %r", item.id, item.table)
            return False
        record_id = item.record_id
        if record_id is None:
            raise SyncItemFailure(item.id, "payload has no id")

        if item.type is SyncOperation.CREATE:
            self.remote.insert(table.value, item.data)
        elif item.type is SyncOperation.UPDATE:
            self.remote.upsert(table.value, item.data)
        elif item.type is SyncOperation.DELETE:
            self.remote.delete_by_id(table.value, record_id)
        else:
            raise SyncItemFailure(item.id, f"unsupported operation {item.type}")
        return True

    def _remove(self, item_id: str) -> None:
        def _drop(state: QueueState):
            return QueueState(state.next_sequence, [i for i in state.items if i.id != item_id]), None

        self._queue.mutate(_drop)

    def _record_failure(self, item: SyncQueueItem, failure: SyncItemFailure, result: FlushResult) -> None:
        failed = item.failed(failure.message, self.clock())
        result.failed.append({"item_id": item.id, "error": failure.message, "attempts": failed.attempts})

        if failed.attempts < self.max_attempts:
            def _update(state: QueueState):
                items = [failed if i.id == item.id else i for i in state.items]
                return QueueState(state.next_sequence, items), None

            self._queue.mutate(_update)
            return

        logger.warning("Dead-lettering sync item %s after %d attempts", item.id, failed.attempts)

        def _move(dead: list[SyncQueueItem]):
            if any(d.id == item.id for d in dead):
                return dead, None
            return dead + [failed], None

        self._dead.mutate(_move)
        self._remove(item.id)
        result.dead_lettered.append(item.id)
        if failed.record_table is SyncTable.TRANSACTIONS:
            self._mark_transaction(failed.record_id, SYNC_FAILED)

    def _mark_transaction(self, transaction_id: str | None, status: str) -> None:
        if transaction_id is None or self.on_transaction_status is None:
            return
        self.on_transaction_status(transaction_id, status)

    # ---- pull ----------------------------------------------------------

    def pull(self, table, filters: dict | None = None) -> PullResult:
        """
        Merge remote reference records into the local collection by id.

        Records with a mutation still waiting in the queue keep their local
        version.
        """
        record_table = parse_table(table)
        if record_table not in PULLABLE:
            raise ValidationError(f"table cannot be pulled: {table}")
        result = PullResult(table=record_table.value)
        if self.remote is None or not self.probe.is_online():
            result.skipped = True
            return result

        key, record_type = PULLABLE[record_table]
        check = PULL_CHECKS.get(record_table)
        rows = self.remote.select(record_table.value, filters or {})
        result.received = len(rows)

        incoming = []
        for row in rows:
            try:
                record = record_type.from_dict(row)
                if check is not None:
                    check(record)
            except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
                logger.warning("Rejecting remote %s row: %s", record_table.value, exc)
                result.rejected += 1
                continue
            incoming.append(record)

        dirty = {i.record_id for i in self.pending() if i.record_table is record_table}
        collection = record_list(self.store, key, record_type, attempts=self.write_attempts)

        def _merge(current: list):
            by_id = {r.id: r for r in current}
            order = [r.id for r in current]
            merged, kept, clashes = 0, [], []
            for record in incoming:
                if record.id in dirty:
                    kept.append(record.id)
                    continue
                if record_table is SyncTable.PRODUCTS:
                    try:
                        ensure_barcode_free(by_id.values(), record.barcode, product_id=record.id)
                    except DuplicateBarcode:
                        clashes.append(record.id)
                        continue
                if record.id not in by_id:
                    order.append(record.id)
                by_id[record.id] = record
                merged += 1
            return [by_id[i] for i in order], (merged, kept, clashes)

        result.merged, result.kept_local, clashes = collection.mutate(_merge)
        if clashes:
            logger.warning("Rejecting remote %s with taken barcodes: %s", record_table.value, ", ".join(clashes))
            result.rejected += len(clashes)
        logger.info("Pulled %d %s (%d merged)", result.received, record_table.value, result.merged)
        return result
