# Overview: Flask API routes for the product hooks of the billing core.

from flask import Blueprint, request, jsonify, current_app

from ..errors import BillingError
from ..services import products_service
from ..services.stock_ledger_service import get_product


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes"}


@products_bp.post("")
def create_product_route():
    """Create a product; stock_quantity becomes its opening ledger entry."""
    try:
        product = products_service.create_product(request.get_json(silent=True) or {})
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"product": product.to_dict()}), 201


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = get_product(product_id)
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"product": product.to_dict()}), 200


@products_bp.post("/<int:product_id>/deactivate")
def deactivate_product_route(product_id: int):
    try:
        product = products_service.deactivate_product(product_id)
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"product": product.to_dict()}), 200


@products_bp.delete("/<int:product_id>")
def delete_product_route(product_id: int):
    """
    Hard delete. Referenced products answer 409 unless ?cascade=1 is given.
    """
    try:
        result = products_service.delete_product(product_id, cascade=_truthy(request.args.get("cascade")))
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result), 200
