"""
Discount engine and discount book.

compute_discount() is pure: given a subtotal (minor units) and a rule it
returns the exact discount as a Decimal in [0, subtotal]. Rounding happens
where totals are presented, not here.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence

from ..models.promotions import Discount, DiscountTier, PERCENTAGE, FIXED, TIERED, DISCOUNT_TYPES
from ..models.sync import SyncOperation, SyncTable
from ..money import ZERO, clamp, percent_of, to_decimal
from ..validation import ValidationError
from .kv_store import KeyValueStore, StorageKeys, record_list


DEFAULT_TIERS: tuple[DiscountTier, ...] = (
    DiscountTier(threshold=1_000_000, rate=Decimal(15)),
    DiscountTier(threshold=500_000, rate=Decimal(10)),
    DiscountTier(threshold=100_000, rate=Decimal(5)),
)


def build_tiers(raw: Iterable) -> tuple[DiscountTier, ...]:
    """Normalize a tier table to highest-threshold-first order."""
    try:
        tiers = [DiscountTier.from_value(t) for t in raw]
    except (KeyError, TypeError, ValueError, ArithmeticError):
        raise ValidationError("tiers must be threshold/rate pairs")
    for tier in tiers:
        if tier.threshold < 0 or tier.rate < 0 or tier.rate > 100:
            raise ValidationError("tier thresholds must be >= 0 and rates within 0..100")
    return tuple(sorted(tiers, key=lambda t: t.threshold, reverse=True))


def tier_rate(subtotal, tiers: Sequence[DiscountTier]) -> Decimal:
    """First tier (highest threshold first) whose threshold the subtotal reaches."""
    amount = to_decimal(subtotal)
    for tier in sorted(tiers, key=lambda t: t.threshold, reverse=True):
        if amount >= tier.threshold:
            return tier.rate
    return ZERO


def compute_discount(
    subtotal,
    discount: Discount | None,
    *,
    default_tiers: Sequence[DiscountTier] = DEFAULT_TIERS,
    at: datetime | None = None,
) -> Decimal:
    """
    Discount amount for a subtotal under one rule.

    - no rule, a rule not valid at `at`, or a subtotal below min_purchase -> 0
    - percentage: subtotal * value / 100
    - fixed: value, capped at the subtotal
    - tiered: rate of the first matching tier
    The result is always within [0, subtotal].
    """
    amount = to_decimal(subtotal)
    if discount is None or amount <= 0:
        return ZERO
    if at is not None and not discount.is_valid_at(at):
        return ZERO
    if discount.min_purchase is not None and amount < discount.min_purchase:
        return ZERO

    if discount.type == PERCENTAGE:
        raw = percent_of(amount, discount.value)
    elif discount.type == FIXED:
        raw = to_decimal(discount.value)
    elif discount.type == TIERED:
        tiers = discount.tiers or tuple(default_tiers)
        raw = percent_of(amount, tier_rate(amount, tiers))
    else:
        raise ValidationError(f"unknown discount type: {discount.type}")

    return clamp(raw, ZERO, amount)


def discount_from_patch(patch: dict, *, discount_id: str | None = None) -> Discount:
    dtype = patch.get("type")
    if dtype not in DISCOUNT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(DISCOUNT_TYPES)}")

    value = to_decimal(patch.get("value") or 0)
    if dtype == PERCENTAGE and value > 100:
        raise ValidationError("percentage value cannot exceed 100")
    if dtype == FIXED and value != value.to_integral_value():
        raise ValidationError("fixed value must be a whole amount")

    valid_from, valid_to = patch.get("valid_from"), patch.get("valid_to")
    if valid_from and valid_to and valid_to < valid_from:
        raise ValidationError("valid_to must not precede valid_from")

    return Discount(
        id=discount_id or patch.get("id") or str(uuid.uuid4()),
        name=patch["name"],
        type=dtype,
        value=value,
        min_purchase=patch.get("min_purchase"),
        tiers=build_tiers(patch.get("tiers") or ()),
        valid_from=valid_from,
        valid_to=valid_to,
        is_active=patch.get("is_active", True),
        created_by=patch.get("created_by"),
    )


class DiscountBook:
    """Owner-managed discount rules, persisted under one key."""

    def __init__(self, store: KeyValueStore, sync=None, *, attempts: int = 3):
        self._discounts = record_list(store, StorageKeys.DISCOUNTS, Discount, attempts=attempts)
        self.sync = sync

    def list_discounts(self) -> list[Discount]:
        return self._discounts.load()

    def get(self, discount_id: str) -> Discount | None:
        for discount in self.list_discounts():
            if discount.id == discount_id:
                return discount
        return None

    def active_discounts(self, at: datetime) -> list[Discount]:
        return [d for d in self.list_discounts() if d.is_valid_at(at)]

    def save_discount(self, discount: Discount) -> Discount:
        """Insert or replace by id."""
        def _apply(discounts: list[Discount]):
            existed = any(d.id == discount.id for d in discounts)
            updated = [discount if d.id == discount.id else d for d in discounts]
            if not existed:
                updated.append(discount)
            return updated, existed

        existed = self._discounts.mutate(_apply)
        if self.sync is not None:
            operation = SyncOperation.UPDATE if existed else SyncOperation.CREATE
            self.sync.enqueue(operation, SyncTable.DISCOUNTS, discount)
        return discount

    def delete_discount(self, discount_id: str) -> bool:
        def _apply(discounts: list[Discount]):
            kept = [d for d in discounts if d.id != discount_id]
            return kept, len(kept) != len(discounts)

        removed = self._discounts.mutate(_apply)
        if removed and self.sync is not None:
            self.sync.enqueue(SyncOperation.DELETE, SyncTable.DISCOUNTS, {"id": discount_id})
        return removed
