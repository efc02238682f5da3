from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from kasir.time_utils import to_utc_z, parse_iso_datetime
from .customers import Customer
from .inventory import Category, Product, StockMovement
from .ledger import AuditLog, Expense, Kasbon
from .promotions import Discount
from .sales import Transaction


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncTable(str, Enum):
    PRODUCTS = "products"
    TRANSACTIONS = "transactions"
    CUSTOMERS = "customers"
    STOCK_MOVEMENTS = "stock_movements"
    DISCOUNTS = "discounts"
    CATEGORIES = "categories"
    EXPENSES = "expenses"
    KASBON = "kasbon"
    AUDIT_LOGS = "audit_logs"


# Record type carried by each table's create/update payloads
RECORD_TYPES = {
    SyncTable.PRODUCTS: Product,
    SyncTable.TRANSACTIONS: Transaction,
    SyncTable.CUSTOMERS: Customer,
    SyncTable.STOCK_MOVEMENTS: StockMovement,
    SyncTable.DISCOUNTS: Discount,
    SyncTable.CATEGORIES: Category,
    SyncTable.EXPENSES: Expense,
    SyncTable.KASBON: Kasbon,
    SyncTable.AUDIT_LOGS: AuditLog,
}


def parse_table(value) -> SyncTable | None:
    if isinstance(value, SyncTable):
        return value
    try:
        return SyncTable(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class SyncQueueItem:
    """
    One pending mutation awaiting remote replay.

    sequence is assigned from the queue's counter at append time and is the
    replay order; id embeds the enqueue timestamp for humans and remains unique
    even when two items share a millisecond.
    """
    id: str
    sequence: int
    type: SyncOperation
    table: str
    data: dict
    timestamp: datetime | None = None
    attempts: int = 0
    last_error: str | None = None
    last_attempt_at: datetime | None = None

    @property
    def record_table(self) -> SyncTable | None:
        return parse_table(self.table)

    @property
    def record_id(self) -> str | None:
        value = self.data.get("id") if isinstance(self.data, dict) else None
        return str(value) if value is not None else None

    def failed(self, error: str, at: datetime) -> "SyncQueueItem":
        return replace(self, attempts=self.attempts + 1, last_error=error, last_attempt_at=at)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sequence": self.sequence,
            "type": self.type.value,
            "table": self.table,
            "data": self.data,
            "timestamp": to_utc_z(self.timestamp),
            "attempts": self.attempts,
            "last_error": self.last_error,
            "last_attempt_at": to_utc_z(self.last_attempt_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncQueueItem":
        return cls(
            id=str(data["id"]),
            sequence=int(data["sequence"]),
            type=SyncOperation(data["type"]),
            table=str(data["table"]),
            data=data.get("data") or {},
            timestamp=parse_iso_datetime(data.get("timestamp")),
            attempts=int(data.get("attempts") or 0),
            last_error=data.get("last_error"),
            last_attempt_at=parse_iso_datetime(data.get("last_attempt_at")),
        )
