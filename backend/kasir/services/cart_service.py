"""
Shopping cart for the active checkout.

The cart stores only its lines and the applied cart-level discount. Every
figure (subtotal, discount, tax, total, item count) is derived on read from
that state; nothing computed is persisted. Line prices come from the product
snapshot taken when the line was first added.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Callable, Sequence

from ..errors import InsufficientStock
from ..models.inventory import Product
from ..models.promotions import Discount, DiscountTier
from ..models.sales import CartItem
from ..money import bps_of, clamp, round_minor
from ..time_utils import utcnow
from ..validation import ValidationError, require_quantity
from .kv_store import Collection, KeyValueStore, StorageKeys
from .products_service import Catalog
from .promotions_service import DEFAULT_TIERS, compute_discount


@dataclass(frozen=True)
class CartState:
    items: tuple[CartItem, ...] = ()
    discount: Discount | None = None

    def find(self, product_id: str) -> CartItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def with_item(self, item: CartItem) -> "CartState":
        if self.find(item.product_id) is None:
            return replace(self, items=self.items + (item,))
        return replace(self, items=tuple(item if i.product_id == item.product_id else i for i in self.items))

    def without(self, product_id: str) -> "CartState":
        return replace(self, items=tuple(i for i in self.items if i.product_id != product_id))

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "discount": self.discount.to_dict() if self.discount else None,
        }

    @classmethod
    def from_dict(cls, data) -> "CartState":
        # Older devices stored the bare list of lines
        if isinstance(data, list):
            return cls(items=tuple(CartItem.from_dict(i) for i in data))
        discount = data.get("discount")
        return cls(
            items=tuple(CartItem.from_dict(i) for i in data.get("items", [])),
            discount=Discount.from_dict(discount) if discount else None,
        )


@dataclass(frozen=True)
class CartTotals:
    subtotal: int
    discount: int
    taxable_base: int
    tax: int
    total: int
    item_count: int
    exact_discount: Decimal = Decimal(0)
    exact_tax: Decimal = Decimal(0)
    exact_total: Decimal = Decimal(0)

    def to_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount": self.discount,
            "taxable_base": self.taxable_base,
            "tax": self.tax,
            "total": self.total,
            "item_count": self.item_count,
        }


@dataclass(frozen=True)
class CartValidation:
    violations: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def to_dict(self) -> dict:
        return {"ok": self.ok, "violations": list(self.violations)}


def compute_totals(
    state: CartState,
    *,
    tax_rate_bps: int,
    default_tiers: Sequence[DiscountTier] = DEFAULT_TIERS,
    at: datetime | None = None,
) -> CartTotals:
    subtotal = sum(item.subtotal for item in state.items)
    exact_discount = compute_discount(subtotal, state.discount, default_tiers=default_tiers, at=at)
    base = subtotal - exact_discount
    exact_tax = bps_of(base, tax_rate_bps)
    exact_total = base + exact_tax
    # Only discount and total are rounded; base and tax are derived from them
    # so that subtotal - discount + tax == total on every receipt.
    discount = round_minor(exact_discount)
    total = round_minor(exact_total)
    return CartTotals(
        subtotal=subtotal,
        discount=discount,
        taxable_base=subtotal - discount,
        tax=total - (subtotal - discount),
        total=total,
        item_count=sum(item.quantity for item in state.items),
        exact_discount=exact_discount,
        exact_tax=exact_tax,
        exact_total=exact_total,
    )


class Cart:
    def __init__(
        self,
        store: KeyValueStore,
        catalog: Catalog,
        *,
        tax_rate_bps: int = 1000,
        default_tiers: Sequence[DiscountTier] = DEFAULT_TIERS,
        attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.tax_rate_bps = tax_rate_bps
        self.default_tiers = tuple(default_tiers)
        self.clock = clock
        self._state: Collection[CartState] = Collection(
            store,
            StorageKeys.CART,
            decode=CartState.from_dict,
            encode=lambda state: state.to_dict(),
            default=CartState,
            attempts=attempts,
        )

    # ---- reads ---------------------------------------------------------

    def state(self) -> CartState:
        return self._state.load()

    def items(self) -> list[CartItem]:
        return list(self.state().items)

    def quantity_of(self, product_id: str) -> int:
        item = self.state().find(product_id)
        return item.quantity if item else 0

    def totals(self, at: datetime | None = None) -> CartTotals:
        return compute_totals(
            self.state(),
            tax_rate_bps=self.tax_rate_bps,
            default_tiers=self.default_tiers,
            at=at or self.clock(),
        )

    def subtotal(self) -> int:
        return self.totals().subtotal

    def item_count(self) -> int:
        return self.totals().item_count

    # ---- mutations -----------------------------------------------------

    def _live_stock(self, product_id: str) -> int | None:
        live = self.catalog.get_product(product_id)
        return live.stock if live is not None else None

    def add_item(self, product: Product, quantity: int = 1) -> CartItem:
        require_quantity(quantity)
        snapshot = self.catalog.get_product(product.id) or product

        def _apply(state: CartState):
            existing = state.find(product.id)
            current_qty = existing.quantity if existing else 0
            if snapshot.stock < current_qty + quantity:
                raise InsufficientStock(
                    f"Only {snapshot.stock} {snapshot.unit} of {snapshot.name} in stock",
                    details={
                        "product_id": product.id,
                        "requested_quantity": current_qty + quantity,
                        "available": snapshot.stock,
                    },
                )
            if existing:
                item = replace(existing, quantity=current_qty + quantity)
            else:
                item = CartItem(product=snapshot, quantity=quantity)
            return state.with_item(item), item

        return self._state.mutate(_apply)

    def set_quantity(self, product_id: str, quantity: int) -> CartItem | None:
        """quantity <= 0 removes the line. Returns the updated line, if any."""
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError("quantity must be an integer")
        if quantity <= 0:
            self.remove_item(product_id)
            return None
        available = self._live_stock(product_id)

        def _apply(state: CartState):
            existing = state.find(product_id)
            if existing is None:
                return state, None
            stock = available if available is not None else 0
            if stock < quantity:
                raise InsufficientStock(
                    f"Only {stock} {existing.product.unit} of {existing.product.name} in stock",
                    details={
                        "product_id": product_id,
                        "requested_quantity": quantity,
                        "available": stock,
                    },
                )
            gross = existing.product.price * quantity
            item = replace(existing, quantity=quantity, discount=min(existing.discount, gross))
            return state.with_item(item), item

        return self._state.mutate(_apply)

    def remove_item(self, product_id: str) -> None:
        """Removing a product that is not in the cart is a no-op."""
        def _apply(state: CartState):
            if state.find(product_id) is None:
                return state, None
            return state.without(product_id), None

        self._state.mutate(_apply)

    def apply_item_discount(self, product_id: str, amount: int) -> CartItem | None:
        """Set a line's absolute discount, clamped to [0, line gross]."""
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("discount must be an integer amount")

        def _apply(state: CartState):
            existing = state.find(product_id)
            if existing is None:
                return state, None
            item = replace(existing, discount=clamp(amount, 0, existing.gross))
            return state.with_item(item), item

        return self._state.mutate(_apply)

    def apply_cart_discount(self, discount: Discount | None) -> None:
        """Set or clear the cart-level discount; lines are untouched."""
        self._state.mutate(lambda state: (replace(state, discount=discount), None))

    def clear(self) -> None:
        """Drop every line and the cart discount in one write."""
        self._state.mutate(lambda state: (CartState(), None))

    # ---- validation ----------------------------------------------------

    def validate(self) -> CartValidation:
        return validate_state(self.state(), self.catalog)


def validate_state(state: CartState, catalog: Catalog) -> CartValidation:
    """One message per violated line, checked against live catalog stock."""
    if not state.items:
        return CartValidation(["Cart is empty"])

    stock_by_id = {p.id: p.stock for p in catalog.list_products()}
    violations = []
    for item in state.items:
        name = item.product.name
        if item.quantity <= 0:
            violations.append(f"{name}: quantity must be positive")
            continue
        stock = stock_by_id.get(item.product_id)
        if stock is None:
            violations.append(f"{name}: no longer in the catalog")
        elif item.quantity > stock:
            violations.append(f"{name}: quantity {item.quantity} exceeds available stock {stock}")
    return CartValidation(violations)
