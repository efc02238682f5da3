# Overview: Flask API routes for checkout and the transaction history.

# backend/kasir/routes/sales.py
from flask import Blueprint, current_app, request

from ..core import current_core
from ..services.sales_service import Payment
from ..validation import ValidationError

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/checkout")
def checkout_route():
    """
    Commit the current cart.

    Body:
    {
        "payment_method": "cash" | "non-cash" | "qris" | "credit",
        "amount_paid": int (required for cash),
        "cashier_id": str,
        "customer_id": str (optional)
    }

    Returns:
    - 201: the committed transaction
    - 422: cart invalid, stock short, or payment short
    """
    data = request.get_json(silent=True) or {}
    cashier_id = data.get("cashier_id")
    if not cashier_id:
        raise ValidationError("cashier_id required")

    transaction = current_core().commit(
        Payment.from_dict(data),
        cashier_id=str(cashier_id),
        customer_id=data.get("customer_id") or None,
    )
    if transaction.stock_anomalies:
        current_app.logger.warning(
            "Transaction %s committed with stock anomalies: %s",
            transaction.transaction_number,
            ", ".join(transaction.stock_anomalies),
        )
    return transaction.to_dict(), 201


@sales_bp.get("/transactions")
def list_transactions_route():
    """
    Query params:
    - status: completed|pending|cancelled (optional)
    - sync_status: pending|synced|failed (optional)
    """
    transactions = current_core().ledger.list_transactions()
    status = request.args.get("status")
    sync_status = request.args.get("sync_status")
    if status:
        transactions = [t for t in transactions if t.status == status]
    if sync_status:
        transactions = [t for t in transactions if t.sync_status == sync_status]
    transactions = sorted(transactions, key=lambda t: t.created_at, reverse=True)
    return {"items": [t.to_dict() for t in transactions], "count": len(transactions)}


@sales_bp.get("/transactions/<transaction_id>")
def get_transaction_route(transaction_id: str):
    transaction = current_core().ledger.get_transaction(transaction_id)
    if transaction is None:
        return {"error": "Transaction not found"}, 404
    return transaction.to_dict()


@sales_bp.post("/transactions/<transaction_id>/cancel")
def cancel_transaction_route(transaction_id: str):
    """
    Body:
    {
        "cancelled_by": str,
        "reason": str (optional)
    }

    Returns:
    - 200: the cancelled transaction
    - 404: unknown transaction
    - 409: already cancelled
    """
    data = request.get_json(silent=True) or {}
    cancelled_by = data.get("cancelled_by")
    if not cancelled_by:
        raise ValidationError("cancelled_by required")
    transaction = current_core().cancel(
        transaction_id,
        cancelled_by=str(cancelled_by),
        reason=data.get("reason") or None,
    )
    current_app.logger.info("Transaction %s cancelled by %s", transaction.transaction_number, cancelled_by)
    return transaction.to_dict()
