from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from kasir.time_utils import to_utc_z, parse_iso_datetime


MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_TYPES = (MOVEMENT_IN, MOVEMENT_OUT, MOVEMENT_ADJUSTMENT)


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    description: str | None = None

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "description": self.description}

    @classmethod
    def from_dict(cls, data: dict) -> "Category":
        return cls(id=str(data["id"]), name=data["name"], description=data.get("description"))


@dataclass(frozen=True)
class Product:
    """
    Sellable catalog item.

    Amounts are integers in minor units. stock never goes below zero; a sale
    that would overdraw it is clamped and recorded as an anomalous movement.
    """
    id: str
    name: str
    barcode: str
    price: int
    cost: int = 0
    stock: int = 0
    unit: str = "pcs"
    category: str | None = None
    category_id: str | None = None
    description: str | None = None
    image: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "category_id": self.category_id,
            "barcode": self.barcode,
            "price": self.price,
            "cost": self.cost,
            "stock": self.stock,
            "unit": self.unit,
            "description": self.description,
            "image": self.image,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Product":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            barcode=str(data.get("barcode") or ""),
            price=int(data.get("price") or 0),
            cost=int(data.get("cost") or 0),
            stock=int(data.get("stock") or 0),
            unit=data.get("unit") or "pcs",
            category=data.get("category"),
            category_id=data.get("category_id"),
            description=data.get("description"),
            image=data.get("image"),
            created_by=data.get("created_by"),
            created_at=parse_iso_datetime(data.get("created_at")),
            updated_at=parse_iso_datetime(data.get("updated_at")),
        )


@dataclass(frozen=True)
class StockMovement:
    """Audit record of one quantity change to a product."""
    id: str
    product_id: str
    type: str  # in, out, adjustment
    quantity: int
    previous_stock: int
    new_stock: int
    reference: str | None = None
    note: str | None = None
    anomaly: bool = False
    created_by: str | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reference": self.reference,
            "note": self.note,
            "anomaly": self.anomaly,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StockMovement":
        return cls(
            id=str(data["id"]),
            product_id=str(data["product_id"]),
            type=data["type"],
            quantity=int(data["quantity"]),
            previous_stock=int(data["previous_stock"]),
            new_stock=int(data["new_stock"]),
            reference=data.get("reference"),
            note=data.get("note"),
            anomaly=bool(data.get("anomaly", False)),
            created_by=data.get("created_by"),
            created_at=parse_iso_datetime(data.get("created_at")),
        )
