"""
Shop books kept beside the sales ledger: expenses, kasbon (customer credit)
and the audit trail.

Every write is appended locally first and queued for sync, like the catalog.
The audit trail is append-only; nothing here edits or removes a log entry.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable

from ..errors import KasbonNotFound
from ..models.ledger import AuditLog, Expense, Kasbon
from ..models.sync import SyncOperation, SyncTable
from ..time_utils import utcnow
from ..validation import ValidationError, require_quantity
from .kv_store import KeyValueStore, StorageKeys, record_list

logger = logging.getLogger(__name__)


class AuditTrail:
    def __init__(
        self,
        store: KeyValueStore,
        sync=None,
        *,
        attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._logs = record_list(store, StorageKeys.AUDIT_LOGS, AuditLog, attempts=attempts)
        self.sync = sync
        self.clock = clock

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        *,
        actor: str | None = None,
        details: dict | None = None,
    ) -> AuditLog:
        log = AuditLog(
            id=str(uuid.uuid4()),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor=actor,
            details=details or {},
            created_at=self.clock(),
        )
        self._logs.mutate(lambda current: (current + [log], None))
        if self.sync is not None:
            self.sync.enqueue(SyncOperation.CREATE, SyncTable.AUDIT_LOGS, log)
        return log

    def list_logs(self, entity_type: str | None = None, entity_id: str | None = None) -> list[AuditLog]:
        logs = self._logs.load()
        if entity_type is not None:
            logs = [log for log in logs if log.entity_type == entity_type]
        if entity_id is not None:
            logs = [log for log in logs if log.entity_id == entity_id]
        return logs


class ExpenseBook:
    def __init__(
        self,
        store: KeyValueStore,
        sync=None,
        *,
        attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._expenses = record_list(store, StorageKeys.EXPENSES, Expense, attempts=attempts)
        self.sync = sync
        self.clock = clock

    def list_expenses(self) -> list[Expense]:
        return self._expenses.load()

    def add_expense(self, patch: dict, *, created_by: str | None = None) -> Expense:
        description = (patch.get("description") or "").strip()
        if not description:
            raise ValidationError("description cannot be blank")
        amount = require_quantity(patch.get("amount"), "amount")
        expense = Expense(
            id=str(uuid.uuid4()),
            description=description,
            amount=amount,
            category=patch.get("category"),
            created_by=created_by or patch.get("created_by"),
            created_at=self.clock(),
        )
        self._expenses.mutate(lambda current: (current + [expense], None))
        if self.sync is not None:
            self.sync.enqueue(SyncOperation.CREATE, SyncTable.EXPENSES, expense)
        return expense


class KasbonBook:
    """
    Credit extended to customers.

    Payments only ever add to `paid`, and never beyond the amount owed.
    """

    def __init__(
        self,
        store: KeyValueStore,
        sync=None,
        audit: AuditTrail | None = None,
        *,
        attempts: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._kasbon = record_list(store, StorageKeys.KASBON, Kasbon, attempts=attempts)
        self.sync = sync
        self.audit = audit
        self.clock = clock

    def _enqueue(self, operation: SyncOperation, kasbon: Kasbon) -> None:
        if self.sync is not None:
            self.sync.enqueue(operation, SyncTable.KASBON, kasbon)

    def list_kasbon(self, *, outstanding_only: bool = False) -> list[Kasbon]:
        records = self._kasbon.load()
        if outstanding_only:
            records = [k for k in records if k.remaining > 0]
        return records

    def get_kasbon(self, kasbon_id: str) -> Kasbon | None:
        for k in self.list_kasbon():
            if k.id == kasbon_id:
                return k
        return None

    def add_kasbon(self, patch: dict, *, created_by: str | None = None) -> Kasbon:
        customer_name = (patch.get("customer_name") or "").strip()
        if not customer_name:
            raise ValidationError("customer_name cannot be blank")
        now = self.clock()
        kasbon = Kasbon(
            id=str(uuid.uuid4()),
            customer_name=customer_name,
            customer_id=patch.get("customer_id"),
            amount=require_quantity(patch.get("amount"), "amount"),
            note=patch.get("note"),
            due_date=patch.get("due_date"),
            created_by=created_by or patch.get("created_by"),
            created_at=now,
            updated_at=now,
        )
        self._kasbon.mutate(lambda current: (current + [kasbon], None))
        self._enqueue(SyncOperation.CREATE, kasbon)
        return kasbon

    def update_kasbon(self, kasbon_id: str, patch: dict) -> Kasbon:
        """Edit the note or due date."""
        changes = {k: v for k, v in patch.items() if k in ("note", "due_date")}
        now = self.clock()

        def _apply(records: list[Kasbon]):
            current = next((k for k in records if k.id == kasbon_id), None)
            if current is None:
                raise KasbonNotFound("Kasbon not found", details={"kasbon_id": kasbon_id})
            updated = replace(current, updated_at=now, **changes)
            return [updated if k.id == kasbon_id else k for k in records], updated

        updated = self._kasbon.mutate(_apply)
        self._enqueue(SyncOperation.UPDATE, updated)
        return updated

    def record_payment(self, kasbon_id: str, amount: int, *, actor: str | None = None) -> Kasbon:
        require_quantity(amount, "amount")
        now = self.clock()

        def _apply(records: list[Kasbon]):
            current = next((k for k in records if k.id == kasbon_id), None)
            if current is None:
                raise KasbonNotFound("Kasbon not found", details={"kasbon_id": kasbon_id})
            if amount > current.remaining:
                raise ValidationError(f"amount exceeds the remaining {current.remaining}")
            updated = replace(current, paid=current.paid + amount, updated_at=now)
            return [updated if k.id == kasbon_id else k for k in records], updated

        updated = self._kasbon.mutate(_apply)
        self._enqueue(SyncOperation.UPDATE, updated)
        if self.audit is not None:
            self.audit.record(
                "kasbon_payment", "kasbon", kasbon_id,
                actor=actor, details={"amount": amount, "remaining": updated.remaining},
            )
        logger.info("Kasbon %s paid %d, %d remaining", kasbon_id, amount, updated.remaining)
        return updated
