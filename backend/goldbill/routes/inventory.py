# backend/goldbill/routes/inventory.py
"""
Inventory and stock ledger routes.

Stock only changes through the ledger: adjustments append an 'adjustment'
entry, sales append 'sale_out' entries (see routes/sales.py).
"""
from flask import Blueprint, request, jsonify, current_app

from goldbill.time_utils import parse_iso_datetime
from ..errors import BillingError, ValidationError
from ..validation import coerce_int
from ..services import stock_ledger_service


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.post("/adjust")
def adjust_inventory_route():
    """
    Adjust stock by a signed delta with a mandatory reason.

    Rejected with 409 when the result would be negative.
    """
    payload = request.get_json(silent=True) or {}

    try:
        if payload.get("product_id") is None:
            raise ValidationError("product_id", "product_id is required")
        if payload.get("quantity_delta") is None:
            raise ValidationError("quantity_delta", "quantity_delta is required")
        product_id = coerce_int(payload["product_id"], "product_id")
        delta = coerce_int(payload["quantity_delta"], "quantity_delta")

        entry = stock_ledger_service.adjust_stock(product_id, delta, payload.get("reason"))
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"entry": entry.to_dict()}), 201


@inventory_bp.get("/transactions")
def list_transactions_route():
    try:
        start_dt = parse_iso_datetime(request.args.get("start_date"))
        end_dt = parse_iso_datetime(request.args.get("end_date"))
    except ValueError:
        return jsonify({"error": "start_date and end_date must be ISO-8601 datetimes"}), 400

    limit = request.args.get("limit", default=200, type=int)
    limit = max(1, min(limit, 1000))

    try:
        entries = stock_ledger_service.list_ledger_entries(
            product_id=request.args.get("product_id", type=int),
            transaction_type=request.args.get("transaction_type"),
            start=start_dt,
            end=end_dt,
            limit=limit,
        )
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status

    return jsonify({"entries": [e.to_dict() for e in entries], "count": len(entries)}), 200


@inventory_bp.get("/overview")
def inventory_overview_route():
    """Totals across active products, including stock value at current rates."""
    return jsonify(stock_ledger_service.inventory_overview()), 200


@inventory_bp.get("/low-stock")
def low_stock_route():
    products = stock_ledger_service.list_low_stock_products()
    return jsonify({"products": [p.to_dict() for p in products], "count": len(products)}), 200


@inventory_bp.get("/products/<int:product_id>/verify")
def verify_product_stock_route(product_id: int):
    """Replay the product's ledger and compare with its stored stock."""
    try:
        result = stock_ledger_service.replay_stock(product_id)
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify(result), 200
