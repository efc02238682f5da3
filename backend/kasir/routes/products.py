# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

# backend/kasir/routes/products.py
"""
Product catalog and stock routes.

Writes go to the local store first and are queued for sync; none of these
routes touch the network.
"""
from flask import Blueprint, request

from ..core import current_core
from ..validation import PRODUCT_POLICY, validate_payload, ValidationError, require_quantity, require_amount

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    List products.

    Query params:
    - q: str (optional) - name/category substring or barcode fragment
    """
    products = current_core().catalog.search(request.args.get("q"))
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/barcode/<barcode>")
def get_by_barcode(barcode: str):
    product = current_core().catalog.find_by_barcode(barcode)
    if product is None:
        return {"error": "Product not found"}, 404
    return product.to_dict()


@products_bp.get("/<product_id>")
def get_product(product_id: str):
    return current_core().catalog.require_product(product_id).to_dict()


@products_bp.post("")
def create_product_route():
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(payload=payload, policy=PRODUCT_POLICY, partial=False)
    created = current_core().catalog.add_product(patch)
    return created.to_dict(), 201


@products_bp.put("/<product_id>")
def update_product_route(product_id: str):
    payload = request.get_json(silent=True) or {}
    patch = validate_payload(payload=payload, policy=PRODUCT_POLICY, partial=True)
    updated = current_core().catalog.update_product(product_id, patch)
    return updated.to_dict(), 200


@products_bp.delete("/<product_id>")
def delete_product_route(product_id: str):
    if not current_core().catalog.delete_product(product_id):
        return {"error": "Product not found"}, 404
    return {"ok": True}, 200


@products_bp.post("/<product_id>/restock")
def restock_route(product_id: str):
    data = request.get_json(silent=True) or {}
    quantity = require_quantity(data.get("quantity"))
    movement = current_core().catalog.restock(
        product_id, quantity, note=data.get("note"), created_by=data.get("user_id"),
    )
    return {"movement": movement.to_dict()}, 201


@products_bp.post("/<product_id>/adjust")
def adjust_route(product_id: str):
    data = request.get_json(silent=True) or {}
    if "stock" not in data:
        raise ValidationError("stock required")
    movement = current_core().catalog.adjust_stock(
        product_id,
        require_amount(data.get("stock"), "stock"),
        reason=data.get("reason"),
        created_by=data.get("user_id"),
    )
    return {"movement": movement.to_dict()}, 201


@products_bp.get("/movements")
def list_movements():
    movements = current_core().catalog.list_stock_movements(request.args.get("product_id"))
    return {"items": [m.to_dict() for m in movements], "count": len(movements)}


@products_bp.get("/categories")
def list_categories():
    return {"items": [c.to_dict() for c in current_core().catalog.list_categories()]}


@products_bp.post("/categories")
def save_category():
    data = request.get_json(silent=True) or {}
    category = current_core().catalog.save_category(
        data.get("name"), category_id=data.get("id"), description=data.get("description"),
    )
    return category.to_dict(), 201
