# Overview: Flask API routes for managing discount rules.

from flask import Blueprint, request

from ..core import current_core
from ..services.promotions_service import discount_from_patch
from ..validation import DISCOUNT_POLICY, parse_datetime_arg, validate_payload

promotions_bp = Blueprint("promotions", __name__, url_prefix="/api/discounts")


@promotions_bp.get("")
def list_discounts():
    """
    Query params:
    - active_at: ISO-8601 (optional) - only rules valid at that instant
    """
    core = current_core()
    active_at = parse_datetime_arg("active_at", request.args.get("active_at"))
    if active_at is not None:
        discounts = core.discounts.active_discounts(active_at)
    else:
        discounts = core.discounts.list_discounts()
    return {"items": [d.to_dict() for d in discounts], "count": len(discounts)}


@promotions_bp.post("")
def create_discount():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(payload=payload, policy=DISCOUNT_POLICY, partial=False)
    discount = current_core().discounts.save_discount(discount_from_patch(patch))
    return discount.to_dict(), 201


@promotions_bp.put("/<discount_id>")
def update_discount(discount_id: str):
    core = current_core()
    existing = core.discounts.get(discount_id)
    if existing is None:
        return {"error": "Discount not found"}, 404
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(payload=payload, policy=DISCOUNT_POLICY, partial=True)
    merged = {**existing.to_dict(), **patch}
    merged["value"] = patch.get("value", existing.value)
    merged["valid_from"] = patch.get("valid_from", existing.valid_from)
    merged["valid_to"] = patch.get("valid_to", existing.valid_to)
    discount = core.discounts.save_discount(discount_from_patch(merged, discount_id=discount_id))
    return discount.to_dict()


@promotions_bp.delete("/<discount_id>")
def delete_discount(discount_id: str):
    if not current_core().discounts.delete_discount(discount_id):
        return {"error": "Discount not found"}, 404
    return {"ok": True}
