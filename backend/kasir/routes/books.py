# Overview: Flask API routes for expenses, kasbon (customer credit) and the audit trail.

from flask import Blueprint, current_app, request

from ..core import current_core
from ..validation import (
    EXPENSE_POLICY,
    KASBON_PAYMENT_POLICY,
    KASBON_POLICY,
    ValidationError,
    validate_payload,
)

books_bp = Blueprint("books", __name__, url_prefix="/api")


@books_bp.get("/expenses")
def list_expenses():
    expenses = current_core().expenses.list_expenses()
    return {
        "items": [e.to_dict() for e in expenses],
        "count": len(expenses),
        "total": sum(e.amount for e in expenses),
    }


@books_bp.post("/expenses")
def create_expense():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(payload=payload, policy=EXPENSE_POLICY, partial=False)
    return current_core().expenses.add_expense(patch).to_dict(), 201


@books_bp.get("/kasbon")
def list_kasbon():
    """
    Query params:
    - outstanding: true to list only records with something left to pay
    """
    outstanding = request.args.get("outstanding", "").lower() == "true"
    records = current_core().kasbon.list_kasbon(outstanding_only=outstanding)
    return {
        "items": [k.to_dict() for k in records],
        "count": len(records),
        "outstanding": sum(k.remaining for k in records),
    }


@books_bp.post("/kasbon")
def create_kasbon():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(payload=payload, policy=KASBON_POLICY, partial=False)
    return current_core().kasbon.add_kasbon(patch).to_dict(), 201


@books_bp.put("/kasbon/<kasbon_id>")
def update_kasbon(kasbon_id: str):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(payload=payload, policy=KASBON_POLICY, partial=True)
    extra = sorted(set(patch) - {"note", "due_date"})
    if extra:
        raise ValidationError(f"Field not editable: {', '.join(extra)}")
    return current_core().kasbon.update_kasbon(kasbon_id, patch).to_dict()


@books_bp.post("/kasbon/<kasbon_id>/payments")
def pay_kasbon(kasbon_id: str):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(payload=payload, policy=KASBON_PAYMENT_POLICY, partial=False)
    kasbon = current_core().kasbon.record_payment(kasbon_id, patch["amount"], actor=patch.get("actor"))
    current_app.logger.info("Kasbon %s payment recorded, %d remaining", kasbon_id, kasbon.remaining)
    return kasbon.to_dict()


@books_bp.get("/audit-logs")
def list_audit_logs():
    """
    Query params:
    - entity_type: e.g. transactions, kasbon (optional)
    - entity_id: (optional)
    """
    logs = current_core().audit.list_logs(
        entity_type=request.args.get("entity_type") or None,
        entity_id=request.args.get("entity_id") or None,
    )
    return {"items": [log.to_dict() for log in logs], "count": len(logs)}
