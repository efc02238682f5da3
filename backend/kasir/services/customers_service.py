from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable

from ..errors import CustomerNotFound
from ..models.customers import Customer
from ..models.sync import SyncOperation, SyncTable
from ..money import floor_div
from ..time_utils import utcnow
from .kv_store import KeyValueStore, StorageKeys, record_list


def loyalty_points(total: int, divisor: int) -> int:
    """One point per `divisor` minor units of the paid total, rounded down."""
    if total <= 0:
        return 0
    return floor_div(total, divisor)


class CustomerBook:
    def __init__(
        self,
        store: KeyValueStore,
        sync=None,
        *,
        attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._customers = record_list(store, StorageKeys.CUSTOMERS, Customer, attempts=attempts)
        self.sync = sync
        self.clock = clock

    def list_customers(self) -> list[Customer]:
        return self._customers.load()

    def get_customer(self, customer_id: str) -> Customer | None:
        for c in self.list_customers():
            if c.id == customer_id:
                return c
        return None

    def require_customer(self, customer_id: str) -> Customer:
        customer = self.get_customer(customer_id)
        if customer is None:
            raise CustomerNotFound("Customer not found", details={"customer_id": customer_id})
        return customer

    def add_customer(self, patch: dict) -> Customer:
        customer = Customer(
            id=str(uuid.uuid4()),
            name=patch["name"],
            phone=patch.get("phone"),
            created_at=self.clock(),
        )
        self._customers.mutate(lambda current: (current + [customer], None))
        if self.sync is not None:
            self.sync.enqueue(SyncOperation.CREATE, SyncTable.CUSTOMERS, customer)
        return customer

    def record_purchase(self, customer_id: str, total: int, *, divisor: int) -> tuple[Customer, int]:
        """Accumulate total_spent and award loyalty points for one checkout."""
        points = loyalty_points(total, divisor)

        def _apply(customers: list[Customer]):
            current = next((c for c in customers if c.id == customer_id), None)
            if current is None:
                raise CustomerNotFound("Customer not found", details={"customer_id": customer_id})
            updated = replace(
                current,
                points=current.points + points,
                total_spent=current.total_spent + total,
            )
            return [updated if c.id == customer_id else c for c in customers], updated

        updated = self._customers.mutate(_apply)
        if self.sync is not None:
            self.sync.enqueue(SyncOperation.UPDATE, SyncTable.CUSTOMERS, updated)
        return updated, points

    def reverse_purchase(self, customer_id: str, total: int, points: int) -> Customer | None:
        """Take back a cancelled checkout's spend and points, never below zero."""
        def _apply(customers: list[Customer]):
            current = next((c for c in customers if c.id == customer_id), None)
            if current is None:
                return customers, None
            updated = replace(
                current,
                points=max(0, current.points - points),
                total_spent=max(0, current.total_spent - total),
            )
            return [updated if c.id == customer_id else c for c in customers], updated

        updated = self._customers.mutate(_apply)
        if updated is not None and self.sync is not None:
            self.sync.enqueue(SyncOperation.UPDATE, SyncTable.CUSTOMERS, updated)
        return updated
