from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from kasir.time_utils import to_utc_z, parse_iso_datetime


PERCENTAGE = "percentage"
FIXED = "fixed"
TIERED = "tiered"
DISCOUNT_TYPES = (PERCENTAGE, FIXED, TIERED)


@dataclass(frozen=True)
class DiscountTier:
    """Subtotals at or above threshold get rate percent off."""
    threshold: int
    rate: Decimal

    def to_dict(self) -> dict:
        return {"threshold": self.threshold, "rate": str(self.rate)}

    @classmethod
    def from_value(cls, value) -> "DiscountTier":
        if isinstance(value, dict):
            threshold, rate = value["threshold"], value["rate"]
        else:
            threshold, rate = value
        return cls(threshold=int(threshold), rate=Decimal(str(rate)))


@dataclass(frozen=True)
class Discount:
    """
    Cart-level discount rule.

    value is a percent for percentage discounts and an amount in minor units for
    fixed discounts. Tiered discounts read tiers (or the configured default
    table when tiers is empty). Carts hold a copy and never mutate it.
    """
    id: str
    name: str
    type: str
    value: Decimal = Decimal(0)
    min_purchase: int | None = None
    tiers: tuple[DiscountTier, ...] = ()
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    is_active: bool = True
    created_by: str | None = None

    def is_valid_at(self, at: datetime) -> bool:
        if not self.is_active:
            return False
        if self.valid_from is not None and at < self.valid_from:
            return False
        if self.valid_to is not None and at > self.valid_to:
            return False
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "value": str(self.value),
            "min_purchase": self.min_purchase,
            "tiers": [t.to_dict() for t in self.tiers],
            "valid_from": to_utc_z(self.valid_from),
            "valid_to": to_utc_z(self.valid_to),
            "is_active": self.is_active,
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Discount":
        min_purchase = data.get("min_purchase")
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            type=data["type"],
            value=Decimal(str(data.get("value") or 0)),
            min_purchase=int(min_purchase) if min_purchase is not None else None,
            tiers=tuple(DiscountTier.from_value(t) for t in data.get("tiers") or ()),
            valid_from=parse_iso_datetime(data.get("valid_from")),
            valid_to=parse_iso_datetime(data.get("valid_to")),
            is_active=bool(data.get("is_active", True)),
            created_by=data.get("created_by"),
        )
