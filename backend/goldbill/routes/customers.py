# Overview: Flask API routes for the customer directory hooks.

from flask import Blueprint, request, jsonify, current_app

from ..errors import BillingError
from ..services import customers_service
from .products import _truthy


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("")
def create_customer_route():
    data = request.get_json(silent=True) or {}
    try:
        customer = customers_service.create_customer(
            name=data.get("name"),
            phone=data.get("phone"),
            email=data.get("email"),
            address=data.get("address"),
        )
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"customer": customer.to_dict()}), 201


@customers_bp.delete("/<int:customer_id>")
def delete_customer_route(customer_id: int):
    """Referenced customers answer 409 unless ?cascade=1 is given."""
    try:
        result = customers_service.delete_customer(customer_id, cascade=_truthy(request.args.get("cascade")))
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete customer")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result), 200
