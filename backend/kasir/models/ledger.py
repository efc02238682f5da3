from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from kasir.time_utils import to_utc_z, parse_iso_datetime


KASBON_UNPAID = "unpaid"
KASBON_PARTIAL = "partial"
KASBON_PAID = "paid"


@dataclass(frozen=True)
class Expense:
    """Money paid out of the shop (supplies, utilities), in minor units."""
    id: str
    description: str
    amount: int
    category: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "amount": self.amount,
            "category": self.category,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Expense":
        return cls(
            id=str(data["id"]),
            description=data["description"],
            amount=int(data["amount"]),
            category=data.get("category"),
            created_by=data.get("created_by"),
            created_at=parse_iso_datetime(data.get("created_at")),
        )


@dataclass(frozen=True)
class Kasbon:
    """
    Goods taken on credit by a customer.

    paid accumulates instalments and never exceeds amount; status follows
    from the two.
    """
    id: str
    customer_name: str
    amount: int
    paid: int = 0
    customer_id: str | None = None
    note: str | None = None
    due_date: datetime | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def remaining(self) -> int:
        return self.amount - self.paid

    @property
    def status(self) -> str:
        if self.paid >= self.amount:
            return KASBON_PAID
        if self.paid > 0:
            return KASBON_PARTIAL
        return KASBON_UNPAID

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_name": self.customer_name,
            "customer_id": self.customer_id,
            "amount": self.amount,
            "paid": self.paid,
            "remaining": self.remaining,
            "status": self.status,
            "note": self.note,
            "due_date": to_utc_z(self.due_date),
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Kasbon":
        return cls(
            id=str(data["id"]),
            customer_name=data["customer_name"],
            amount=int(data["amount"]),
            paid=int(data.get("paid") or 0),
            customer_id=data.get("customer_id"),
            note=data.get("note"),
            due_date=parse_iso_datetime(data.get("due_date")),
            created_by=data.get("created_by"),
            created_at=parse_iso_datetime(data.get("created_at")),
            updated_at=parse_iso_datetime(data.get("updated_at")),
        )


@dataclass(frozen=True)
class AuditLog:
    """Append-only record of a notable action on the device."""
    id: str
    action: str
    entity_type: str
    entity_id: str
    actor: str | None = None
    details: dict | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor": self.actor,
            "details": self.details or {},
            "created_at": to_utc_z(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditLog":
        return cls(
            id=str(data["id"]),
            action=data["action"],
            entity_type=data["entity_type"],
            entity_id=str(data["entity_id"]),
            actor=data.get("actor"),
            details=data.get("details") or {},
            created_at=parse_iso_datetime(data.get("created_at")),
        )
