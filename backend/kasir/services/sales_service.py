"""
Checkout: turns the validated cart plus a payment into an immutable Transaction.

Every check (cart validation against live stock, payment method and amount,
customer lookup) completes before the first write. Writes then happen in this
order: stock decrement (one write for all lines), transaction record and its
sync queue entry, customer loyalty, cart clear.

Cancelling a completed sale puts back exactly what its stock movements took
out and takes back the loyalty it earned.
"""
from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Sequence

from ..errors import CartInvalid, InsufficientPayment, InvalidTransition, TransactionNotFound
from ..models.inventory import MOVEMENT_OUT
from ..models.promotions import DiscountTier
from ..models.sales import (
    PAYMENT_CASH,
    PAYMENT_METHODS,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_PENDING,
    SYNC_PENDING,
    SYNC_STATUSES,
    Transaction,
)
from ..models.sync import SyncOperation, SyncTable
from ..time_utils import utcnow
from ..validation import ValidationError
from .books_service import AuditTrail
from .cart_service import Cart, compute_totals, validate_state
from .customers_service import CustomerBook, loyalty_points
from .kv_store import KeyValueStore, StorageKeys, record_list
from .products_service import Catalog
from .promotions_service import DEFAULT_TIERS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Payment:
    method: str
    amount_paid: int | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Payment":
        amount = data.get("amount_paid")
        if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
            raise ValidationError("amount_paid must be an integer amount")
        if amount is not None and amount < 0:
            raise ValidationError("amount_paid must be >= 0")
        return cls(method=data.get("payment_method") or data.get("method") or "", amount_paid=amount)


def next_transaction_number(now: datetime) -> str:
    """Time-derived, human-readable; sorts by creation time to the millisecond."""
    return f"TRX-{now:%Y%m%d-%H%M%S}{now.microsecond // 1000:03d}-{uuid.uuid4().hex[:4].upper()}"


# Allowed status changes; cancelled is final
STATUS_TRANSITIONS = {
    STATUS_PENDING: (STATUS_COMPLETED, STATUS_CANCELLED),
    STATUS_COMPLETED: (STATUS_CANCELLED,),
    STATUS_CANCELLED: (),
}


class TransactionLedger:
    """
    Committed transactions.

    Items and amounts never change once appended. Only status moves, along
    STATUS_TRANSITIONS, plus the sync bookkeeping in sync_status.
    """

    def __init__(self, store: KeyValueStore, sync=None, *, attempts: int = 3):
        self._transactions = record_list(store, StorageKeys.TRANSACTIONS, Transaction, attempts=attempts)
        self.sync = sync

    def list_transactions(self) -> list[Transaction]:
        return self._transactions.load()

    def get_transaction(self, transaction_id: str) -> Transaction | None:
        for t in self.list_transactions():
            if t.id == transaction_id:
                return t
        return None

    def require_transaction(self, transaction_id: str) -> Transaction:
        transaction = self.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFound("Transaction not found", details={"transaction_id": transaction_id})
        return transaction

    def append(self, transaction: Transaction) -> None:
        def _apply(current: list[Transaction]):
            if any(t.id == transaction.id for t in current):
                return current, None
            return current + [transaction], None

        self._transactions.mutate(_apply)
        if self.sync is not None:
            self.sync.enqueue(SyncOperation.CREATE, SyncTable.TRANSACTIONS, transaction)

    def set_status(self, transaction_id: str, status: str) -> tuple[Transaction, Transaction]:
        """Move a transaction to a new status; returns (before, after)."""
        if status not in STATUS_TRANSITIONS:
            raise ValidationError(f"status must be one of {', '.join(STATUS_TRANSITIONS)}")

        def _apply(current: list[Transaction]):
            before = next((t for t in current if t.id == transaction_id), None)
            if before is None:
                raise TransactionNotFound("Transaction not found", details={"transaction_id": transaction_id})
            if status not in STATUS_TRANSITIONS[before.status]:
                raise InvalidTransition(
                    f"Cannot change a {before.status} transaction to {status}",
                    details={"transaction_id": transaction_id, "status": before.status},
                )
            after = replace(before, status=status, sync_status=SYNC_PENDING)
            return [after if t.id == transaction_id else t for t in current], (before, after)

        before, after = self._transactions.mutate(_apply)
        if self.sync is not None:
            self.sync.enqueue(SyncOperation.UPDATE, SyncTable.TRANSACTIONS, after)
        return before, after

    def set_sync_status(self, transaction_id: str, status: str) -> Transaction | None:
        if status not in SYNC_STATUSES:
            raise ValidationError(f"sync_status must be one of {', '.join(SYNC_STATUSES)}")

        def _apply(current: list[Transaction]):
            found = None
            updated = []
            for t in current:
                if t.id == transaction_id:
                    t = found = replace(t, sync_status=status)
                updated.append(t)
            return updated, found

        return self._transactions.mutate(_apply)


class Checkout:
    def __init__(
        self,
        cart: Cart,
        catalog: Catalog,
        ledger: TransactionLedger,
        customers: CustomerBook,
        audit: AuditTrail | None = None,
        *,
        tax_rate_bps: int = 1000,
        loyalty_divisor: int = 10000,
        default_tiers: Sequence[DiscountTier] = DEFAULT_TIERS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.cart = cart
        self.catalog = catalog
        self.ledger = ledger
        self.customers = customers
        self.audit = audit
        self.tax_rate_bps = tax_rate_bps
        self.loyalty_divisor = loyalty_divisor
        self.default_tiers = tuple(default_tiers)
        self.clock = clock

    def commit(
        self,
        payment: Payment,
        *,
        cashier_id: str,
        customer_id: str | None = None,
    ) -> Transaction:
        now = self.clock()
        state = self.cart.state()

        # Re-validate even if the caller already did; stock may have moved
        validation = validate_state(state, self.catalog)
        if not validation.ok:
            raise CartInvalid(validation.violations)

        totals = compute_totals(
            state,
            tax_rate_bps=self.tax_rate_bps,
            default_tiers=self.default_tiers,
            at=now,
        )

        if payment.method not in PAYMENT_METHODS:
            raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
        if payment.method == PAYMENT_CASH:
            amount_paid = payment.amount_paid or 0
            if amount_paid < totals.total:
                raise InsufficientPayment(
                    "Amount paid is less than the total",
                    details={"total": totals.total, "amount_paid": amount_paid},
                )
            change = max(0, amount_paid - totals.total)
        else:
            amount_paid = payment.amount_paid if payment.amount_paid is not None else totals.total
            change = 0

        if customer_id:
            self.customers.require_customer(customer_id)

        transaction_number = next_transaction_number(now)
        points = loyalty_points(totals.total, self.loyalty_divisor) if customer_id else 0
        transaction = Transaction(
            id=str(uuid.uuid4()),
            transaction_number=transaction_number,
            items=copy.deepcopy(state.items),
            subtotal=totals.subtotal,
            discount=totals.discount,
            tax=totals.tax,
            total=totals.total,
            payment_method=payment.method,
            amount_paid=amount_paid,
            change=change,
            cashier_id=cashier_id,
            customer_id=customer_id or None,
            discount_id=state.discount.id if state.discount else None,
            status=STATUS_COMPLETED,
            sync_status=SYNC_PENDING,
            points_earned=points,
            created_at=now,
        )

        # Validation is complete; mutations start here
        movements = self.catalog.apply_sale(
            [(item.product_id, item.quantity) for item in state.items],
            reference=transaction_number,
            created_by=cashier_id,
        )
        anomalies = tuple(m.product_id for m in movements if m.anomaly)
        if anomalies:
            transaction = replace(transaction, stock_anomalies=anomalies)

        self.ledger.append(transaction)

        if customer_id:
            self.customers.record_purchase(customer_id, totals.total, divisor=self.loyalty_divisor)

        self.cart.clear()
        logger.info("Committed %s total=%d items=%d", transaction_number, totals.total, totals.item_count)
        return transaction

    def cancel(self, transaction_id: str, *, cancelled_by: str, reason: str | None = None) -> Transaction:
        before, after = self.ledger.set_status(transaction_id, STATUS_CANCELLED)

        if before.status == STATUS_COMPLETED:
            # Clamped lines took out less than was sold; return what was taken
            lines = [
                (m.product_id, m.previous_stock - m.new_stock)
                for m in self.catalog.list_stock_movements()
                if m.type == MOVEMENT_OUT and m.reference == before.transaction_number
                and m.previous_stock > m.new_stock
            ]
            if lines:
                self.catalog.return_stock(lines, reference=before.transaction_number, created_by=cancelled_by)
            if before.customer_id:
                self.customers.reverse_purchase(before.customer_id, before.total, before.points_earned)

        if self.audit is not None:
            self.audit.record(
                "transaction_cancelled", "transactions", transaction_id,
                actor=cancelled_by,
                details={"reason": reason, "previous_status": before.status, "total": before.total},
            )
        logger.info("Cancelled %s (was %s)", before.transaction_number, before.status)
        return after
