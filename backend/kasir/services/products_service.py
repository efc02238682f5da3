# backend/kasir/services/products_service.py
"""
Product catalog and stock movements.

Stock invariants:
- Product.stock is never negative. A sale decrement larger than the stock on
  hand is clamped to zero and its movement is flagged as an anomaly.
- Every stock change appends a StockMovement (in / out / adjustment).
- apply_sale() stages all lines and writes the product collection once, so a
  checkout's decrements land together or not at all.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable

from ..errors import DuplicateBarcode, ProductNotFound
from ..models.inventory import (
    Category,
    Product,
    StockMovement,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_ADJUSTMENT,
)
from ..models.sync import SyncOperation, SyncTable
from ..time_utils import utcnow
from ..validation import ValidationError, require_quantity, require_amount
from .kv_store import KeyValueStore, StorageKeys, record_list

logger = logging.getLogger(__name__)

PRODUCT_MUTABLE_FIELDS = {
    "name", "category", "category_id", "barcode", "price", "cost",
    "stock", "unit", "description", "image",
}


def ensure_barcode_free(products: Iterable[Product], barcode: str, *, product_id: str | None = None) -> None:
    for p in products:
        if p.barcode == barcode and p.id != product_id:
            raise DuplicateBarcode(
                "Barcode already used by another product.",
                details={"barcode": barcode, "product_id": p.id},
            )


def check_product_record(product: Product) -> Product:
    """Reject records written outside the catalog (imports, pulls) that break stock rules."""
    if not product.barcode:
        raise ValidationError("barcode is required")
    for key in ("price", "cost", "stock"):
        require_amount(getattr(product, key), key)
    return product


def check_unique_barcodes(products: Iterable[Product]) -> None:
    seen: dict[str, str] = {}
    for p in products:
        if p.barcode in seen and seen[p.barcode] != p.id:
            raise DuplicateBarcode(
                "Barcode already used by another product.",
                details={"barcode": p.barcode, "product_id": seen[p.barcode]},
            )
        seen[p.barcode] = p.id


class Catalog:
    def __init__(
        self,
        store: KeyValueStore,
        sync=None,
        *,
        attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._products = record_list(store, StorageKeys.PRODUCTS, Product, attempts=attempts)
        self._movements = record_list(store, StorageKeys.STOCK_MOVEMENTS, StockMovement, attempts=attempts)
        self._categories = record_list(store, StorageKeys.CATEGORIES, Category, attempts=attempts)
        self.sync = sync
        self.clock = clock

    def _enqueue(self, operation: SyncOperation, table: SyncTable, record) -> None:
        if self.sync is not None:
            self.sync.enqueue(operation, table, record)

    # ---- reads ---------------------------------------------------------

    def list_products(self) -> list[Product]:
        return self._products.load()

    def get_product(self, product_id: str) -> Product | None:
        for p in self.list_products():
            if p.id == product_id:
                return p
        return None

    def require_product(self, product_id: str) -> Product:
        product = self.get_product(product_id)
        if product is None:
            raise ProductNotFound("Product not found", details={"product_id": product_id})
        return product

    def find_by_barcode(self, barcode: str) -> Product | None:
        barcode = (barcode or "").strip()
        if not barcode:
            return None
        for p in self.list_products():
            if p.barcode == barcode:
                return p
        return None

    def search(self, query: str | None) -> list[Product]:
        """Case-insensitive name/category match or barcode substring match."""
        products = self.list_products()
        if not query or not query.strip():
            return products
        needle = query.strip()
        lowered = needle.lower()
        return [
            p for p in products
            if lowered in p.name.lower()
            or needle in p.barcode
            or (p.category and lowered in p.category.lower())
        ]

    # ---- catalog management --------------------------------------------

    def add_product(self, patch: dict, *, created_by: str | None = None) -> Product:
        barcode = patch.get("barcode")
        if not barcode:
            raise ValidationError("barcode is required")
        now = self.clock()
        product = Product(
            id=str(uuid.uuid4()),
            name=patch["name"],
            barcode=barcode,
            price=require_amount(patch.get("price", 0), "price"),
            cost=require_amount(patch.get("cost", 0), "cost"),
            stock=require_amount(patch.get("stock", 0), "stock"),
            unit=patch.get("unit") or "pcs",
            category=patch.get("category"),
            category_id=patch.get("category_id"),
            description=patch.get("description"),
            image=patch.get("image"),
            created_by=created_by or patch.get("created_by"),
            created_at=now,
            updated_at=now,
        )

        def _apply(products: list[Product]):
            ensure_barcode_free(products, product.barcode)
            return products + [product], None

        self._products.mutate(_apply)
        self._enqueue(SyncOperation.CREATE, SyncTable.PRODUCTS, product)
        return product

    def update_product(self, product_id: str, patch: dict) -> Product:
        changes = {k: v for k, v in patch.items() if k in PRODUCT_MUTABLE_FIELDS}
        for key in ("price", "cost", "stock"):
            if key in changes:
                require_amount(changes[key], key)
        if "barcode" in changes and not changes["barcode"]:
            raise ValidationError("barcode cannot be blank")
        now = self.clock()

        def _apply(products: list[Product]):
            current = next((p for p in products if p.id == product_id), None)
            if current is None:
                raise ProductNotFound("Product not found", details={"product_id": product_id})
            if "barcode" in changes:
                ensure_barcode_free(products, changes["barcode"], product_id=product_id)
            updated = replace(current, updated_at=now, **changes)
            return [updated if p.id == product_id else p for p in products], (current, updated)

        previous, updated = self._products.mutate(_apply)
        if "stock" in changes and changes["stock"] != previous.stock:
            self._record_movements([
                self._movement(
                    previous.id, MOVEMENT_ADJUSTMENT, previous.stock, updated.stock,
                    note="product edit",
                ),
            ])
        self._enqueue(SyncOperation.UPDATE, SyncTable.PRODUCTS, updated)
        return updated

    def delete_product(self, product_id: str) -> bool:
        """
        Remove from the active catalog. Transactions keep their own snapshot,
        so history is unaffected.
        """
        def _apply(products: list[Product]):
            kept = [p for p in products if p.id != product_id]
            return kept, len(kept) != len(products)

        removed = self._products.mutate(_apply)
        if removed:
            self._enqueue(SyncOperation.DELETE, SyncTable.PRODUCTS, {"id": product_id})
        return removed

    def seed(self, products: Iterable[dict]) -> int:
        """Add sample products when the catalog is empty; returns count added."""
        if self.list_products():
            return 0
        added = 0
        for patch in products:
            self.add_product(patch)
            added += 1
        return added

    # ---- stock ---------------------------------------------------------

    def _movement(
        self,
        product_id: str,
        movement_type: str,
        previous_stock: int,
        new_stock: int,
        *,
        quantity: int | None = None,
        reference: str | None = None,
        note: str | None = None,
        anomaly: bool = False,
        created_by: str | None = None,
    ) -> StockMovement:
        return StockMovement(
            id=str(uuid.uuid4()),
            product_id=product_id,
            type=movement_type,
            quantity=quantity if quantity is not None else abs(new_stock - previous_stock),
            previous_stock=previous_stock,
            new_stock=new_stock,
            reference=reference,
            note=note,
            anomaly=anomaly,
            created_by=created_by,
            created_at=self.clock(),
        )

    def _record_movements(self, movements: list[StockMovement]) -> None:
        if not movements:
            return
        self._movements.mutate(lambda current: (current + movements, None))
        for movement in movements:
            self._enqueue(SyncOperation.CREATE, SyncTable.STOCK_MOVEMENTS, movement)

    def _set_stock(self, product_id: str, compute, build_movement) -> StockMovement:
        now = self.clock()

        def _apply(products: list[Product]):
            current = next((p for p in products if p.id == product_id), None)
            if current is None:
                raise ProductNotFound("Product not found", details={"product_id": product_id})
            updated = replace(current, stock=compute(current.stock), updated_at=now)
            return [updated if p.id == product_id else p for p in products], (current, updated)

        previous, updated = self._products.mutate(_apply)
        movement = build_movement(previous, updated)
        self._record_movements([movement])
        self._enqueue(SyncOperation.UPDATE, SyncTable.PRODUCTS, updated)
        return movement

    def restock(self, product_id: str, quantity: int, *, note: str | None = None,
                created_by: str | None = None) -> StockMovement:
        require_quantity(quantity)
        return self._set_stock(
            product_id,
            lambda stock: stock + quantity,
            lambda before, after: self._movement(
                product_id, MOVEMENT_IN, before.stock, after.stock,
                quantity=quantity, note=note, created_by=created_by,
            ),
        )

    def adjust_stock(self, product_id: str, new_stock: int, *, reason: str | None = None,
                     created_by: str | None = None) -> StockMovement:
        """Set stock to a counted value."""
        require_amount(new_stock, "stock")
        return self._set_stock(
            product_id,
            lambda stock: new_stock,
            lambda before, after: self._movement(
                product_id, MOVEMENT_ADJUSTMENT, before.stock, after.stock,
                note=reason, created_by=created_by,
            ),
        )

    def apply_sale(
        self,
        lines: list[tuple[str, int]],
        *,
        reference: str,
        created_by: str | None = None,
    ) -> list[StockMovement]:
        """
        Decrement stock for every (product_id, quantity) line in one write.

        Each decrement clamps at zero; clamped lines produce anomaly movements.
        A missing product aborts the whole batch before anything is written.
        """
        now = self.clock()
        wanted: dict[str, int] = {}
        for product_id, quantity in lines:
            require_quantity(quantity)
            wanted[product_id] = wanted.get(product_id, 0) + quantity

        def _apply(products: list[Product]):
            by_id = {p.id: p for p in products}
            missing = [pid for pid in wanted if pid not in by_id]
            if missing:
                raise ProductNotFound("Product not found", details={"product_ids": missing})
            changes = []
            for product_id, quantity in wanted.items():
                current = by_id[product_id]
                new_stock = max(0, current.stock - quantity)
                by_id[product_id] = replace(current, stock=new_stock, updated_at=now)
                changes.append((current, by_id[product_id], quantity))
            return [by_id[p.id] for p in products], changes

        changes = self._products.mutate(_apply)

        movements = []
        for before, after, quantity in changes:
            anomaly = before.stock < quantity
            if anomaly:
                logger.warning(
                    "Stock for %s clamped at zero: had %d, sold %d (%s)",
                    before.id, before.stock, quantity, reference,
                )
            movements.append(self._movement(
                before.id, MOVEMENT_OUT, before.stock, after.stock,
                quantity=quantity, reference=reference, note=f"Sale {reference}",
                anomaly=anomaly, created_by=created_by,
            ))
        self._record_movements(movements)
        for _, after, _ in changes:
            self._enqueue(SyncOperation.UPDATE, SyncTable.PRODUCTS, after)
        return movements

    def return_stock(
        self,
        lines: list[tuple[str, int]],
        *,
        reference: str,
        created_by: str | None = None,
    ) -> list[StockMovement]:
        """
        Put cancelled quantities back in one write.

        Products deleted since the sale are skipped; history keeps their snapshot.
        """
        now = self.clock()
        wanted: dict[str, int] = {}
        for product_id, quantity in lines:
            require_quantity(quantity)
            wanted[product_id] = wanted.get(product_id, 0) + quantity

        def _apply(products: list[Product]):
            by_id = {p.id: p for p in products}
            changes = []
            for product_id, quantity in wanted.items():
                current = by_id.get(product_id)
                if current is None:
                    continue
                by_id[product_id] = replace(current, stock=current.stock + quantity, updated_at=now)
                changes.append((current, by_id[product_id], quantity))
            return [by_id[p.id] for p in products], changes

        changes = self._products.mutate(_apply)
        movements = [
            self._movement(
                before.id, MOVEMENT_IN, before.stock, after.stock,
                quantity=quantity, reference=reference, note=f"Cancelled {reference}",
                created_by=created_by,
            )
            for before, after, quantity in changes
        ]
        self._record_movements(movements)
        for _, after, _ in changes:
            self._enqueue(SyncOperation.UPDATE, SyncTable.PRODUCTS, after)
        return movements

    def list_stock_movements(self, product_id: str | None = None) -> list[StockMovement]:
        movements = self._movements.load()
        if product_id is not None:
            movements = [m for m in movements if m.product_id == product_id]
        return movements

    # ---- categories ----------------------------------------------------

    def list_categories(self) -> list[Category]:
        return self._categories.load()

    def save_category(self, name: str, *, category_id: str | None = None,
                      description: str | None = None) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValidationError("name cannot be blank")
        category = Category(id=category_id or str(uuid.uuid4()), name=name, description=description)

        def _apply(categories: list[Category]):
            existed = any(c.id == category.id for c in categories)
            updated = [category if c.id == category.id else c for c in categories]
            if not existed:
                updated.append(category)
            return updated, existed

        existed = self._categories.mutate(_apply)
        self._enqueue(SyncOperation.UPDATE if existed else SyncOperation.CREATE, SyncTable.CATEGORIES, category)
        return category
