from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from kasir.time_utils import to_utc_z, parse_iso_datetime


@dataclass(frozen=True)
class Customer:
    """
    Customer with denormalized loyalty aggregates.

    points and total_spent are updated when a checkout naming the customer
    commits.
    """
    id: str
    name: str
    phone: str | None = None
    points: int = 0
    total_spent: int = 0
    created_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "points": self.points,
            "total_spent": self.total_spent,
            "created_at": to_utc_z(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Customer":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            phone=data.get("phone"),
            points=int(data.get("points") or 0),
            total_spent=int(data.get("total_spent") or 0),
            created_at=parse_iso_datetime(data.get("created_at")),
        )
