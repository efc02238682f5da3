# Overview: Flask API routes for the active cart; every response carries the fresh totals.

from flask import Blueprint, request

from ..core import current_core
from ..validation import ValidationError, require_quantity

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def cart_payload(core) -> dict:
    state = core.cart.state()
    return {
        "items": [item.to_dict() for item in state.items],
        "discount": state.discount.to_dict() if state.discount else None,
        "totals": core.cart.totals().to_dict(),
    }


@cart_bp.get("")
def get_cart():
    return cart_payload(current_core())


@cart_bp.post("/items")
def add_item():
    """
    Body: {product_id | barcode, quantity?}
    """
    core = current_core()
    data = request.get_json(silent=True) or {}
    quantity = require_quantity(data.get("quantity", 1))
    if data.get("barcode"):
        product = core.catalog.find_by_barcode(str(data["barcode"]))
        if product is None:
            return {"error": "Product not found"}, 404
    elif data.get("product_id"):
        product = core.catalog.require_product(str(data["product_id"]))
    else:
        raise ValidationError("product_id or barcode required")

    core.cart.add_item(product, quantity)
    return cart_payload(core), 201


@cart_bp.put("/items/<product_id>")
def update_item(product_id: str):
    core = current_core()
    data = request.get_json(silent=True) or {}
    if "quantity" in data:
        core.cart.set_quantity(product_id, data["quantity"])
    if "discount" in data:
        core.cart.apply_item_discount(product_id, data["discount"])
    return cart_payload(core)


@cart_bp.delete("/items/<product_id>")
def remove_item(product_id: str):
    core = current_core()
    core.cart.remove_item(product_id)
    return cart_payload(core)


@cart_bp.put("/discount")
def apply_discount():
    """Body: {discount_id} or {discount_id: null} to clear."""
    core = current_core()
    data = request.get_json(silent=True) or {}
    discount_id = data.get("discount_id")
    if discount_id is None:
        core.cart.apply_cart_discount(None)
        return cart_payload(core)

    discount = core.discounts.get(str(discount_id))
    if discount is None:
        return {"error": "Discount not found"}, 404
    core.cart.apply_cart_discount(discount)
    return cart_payload(core)


@cart_bp.get("/validate")
def validate_cart():
    return current_core().cart.validate().to_dict()


@cart_bp.delete("")
def clear_cart():
    core = current_core()
    core.cart.clear()
    return cart_payload(core)
