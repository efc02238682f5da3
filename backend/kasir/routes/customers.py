# Overview: Flask API routes for customers and their loyalty balances.

from flask import Blueprint, request

from ..core import current_core
from ..validation import CUSTOMER_POLICY, validate_payload

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
def list_customers():
    customers = current_core().customers.list_customers()
    return {"items": [c.to_dict() for c in customers], "count": len(customers)}


@customers_bp.get("/<customer_id>")
def get_customer(customer_id: str):
    return current_core().customers.require_customer(customer_id).to_dict()


@customers_bp.post("")
def create_customer():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(payload=payload, policy=CUSTOMER_POLICY, partial=False)
    return current_core().customers.add_customer(patch).to_dict(), 201
