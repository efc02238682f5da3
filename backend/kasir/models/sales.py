from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from kasir.time_utils import to_utc_z, parse_iso_datetime
from .inventory import Product


PAYMENT_CASH = "cash"
PAYMENT_METHODS = ("cash", "non-cash", "qris", "credit")

STATUS_COMPLETED = "completed"
STATUS_PENDING = "pending"
STATUS_CANCELLED = "cancelled"

SYNC_SYNCED = "synced"
SYNC_PENDING = "pending"
SYNC_FAILED = "failed"
SYNC_STATUSES = (SYNC_SYNCED, SYNC_PENDING, SYNC_FAILED)


@dataclass(frozen=True)
class CartItem:
    """
    One cart line.

    product is the snapshot taken when the line was first added; its price is
    the unit price for the life of the line even if the catalog is repriced.
    discount is an absolute amount, kept within [0, price * quantity].
    """
    product: Product
    quantity: int
    discount: int = 0

    @property
    def product_id(self) -> str:
        return self.product.id

    @property
    def gross(self) -> int:
        return self.product.price * self.quantity

    @property
    def subtotal(self) -> int:
        return self.gross - min(self.discount, self.gross)

    def to_dict(self) -> dict:
        return {
            "product": self.product.to_dict(),
            "quantity": self.quantity,
            "discount": self.discount,
            "subtotal": self.subtotal,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartItem":
        return cls(
            product=Product.from_dict(data["product"]),
            quantity=int(data["quantity"]),
            discount=int(data.get("discount") or 0),
        )


@dataclass(frozen=True)
class Transaction:
    """Immutable record of a committed checkout."""
    id: str
    transaction_number: str
    items: tuple[CartItem, ...]
    subtotal: int
    discount: int
    tax: int
    total: int
    payment_method: str
    amount_paid: int
    change: int
    cashier_id: str
    customer_id: str | None = None
    discount_id: str | None = None
    status: str = STATUS_COMPLETED
    sync_status: str = SYNC_PENDING
    points_earned: int = 0
    created_at: datetime | None = None
    stock_anomalies: tuple[str, ...] = field(default=())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "items": [item.to_dict() for item in self.items],
            "subtotal": self.subtotal,
            "discount": self.discount,
            "tax": self.tax,
            "total": self.total,
            "payment_method": self.payment_method,
            "amount_paid": self.amount_paid,
            "change": self.change,
            "customer_id": self.customer_id,
            "cashier_id": self.cashier_id,
            "discount_id": self.discount_id,
            "status": self.status,
            "sync_status": self.sync_status,
            "points_earned": self.points_earned,
            "created_at": to_utc_z(self.created_at),
            "stock_anomalies": list(self.stock_anomalies),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Transaction":
        return cls(
            id=str(data["id"]),
            transaction_number=data["transaction_number"],
            items=tuple(CartItem.from_dict(i) for i in data.get("items") or ()),
            subtotal=int(data["subtotal"]),
            discount=int(data.get("discount") or 0),
            tax=int(data.get("tax") or 0),
            total=int(data["total"]),
            payment_method=data["payment_method"],
            amount_paid=int(data.get("amount_paid") or 0),
            change=int(data.get("change") or 0),
            cashier_id=data.get("cashier_id") or "",
            customer_id=data.get("customer_id"),
            discount_id=data.get("discount_id"),
            status=data.get("status") or STATUS_COMPLETED,
            sync_status=data.get("sync_status") or SYNC_PENDING,
            points_earned=int(data.get("points_earned") or 0),
            created_at=parse_iso_datetime(data.get("created_at")),
            stock_anomalies=tuple(data.get("stock_anomalies") or ()),
        )
