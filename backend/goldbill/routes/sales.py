# Overview: Flask API routes for sale documents; parses input and returns JSON responses.

# backend/goldbill/routes/sales.py
"""
Sale document API routes.

Totals are always computed server-side; any subtotal/tax_amount/total_amount
in the request body is ignored.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start_date/end_date filtering is inclusive.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import sales_service
from ..errors import BillingError
from goldbill.time_utils import parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
def create_sale_route():
    """
    Create an invoice, bill or exchange bill.

    Idempotency-Key header (or idempotency_key in the body) is stored on the
    document; replaying a key fails instead of creating a duplicate.
    """
    try:
        data = request.get_json(silent=True) or {}
        idempotency_key = request.headers.get("Idempotency-Key")

        doc = sales_service.create_sale_document(data, idempotency_key=idempotency_key)

        return jsonify({"document": doc.to_dict()}), 201

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create sale document")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
def list_sales_route():
    try:
        start_dt = parse_iso_datetime(request.args.get("start_date"))
        end_dt = parse_iso_datetime(request.args.get("end_date"))
    except ValueError:
        return jsonify({"error": "start_date and end_date must be ISO-8601 datetimes"}), 400

    limit = request.args.get("limit", default=200, type=int)
    limit = max(1, min(limit, 500))

    try:
        docs = sales_service.list_sale_documents(
            variant=request.args.get("variant"),
            payment_status=request.args.get("payment_status"),
            customer_id=request.args.get("customer_id", type=int),
            start=start_dt,
            end=end_dt,
            search=request.args.get("search"),
            limit=limit,
        )
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status

    return jsonify({
        "documents": [doc.to_dict(include_items=False) for doc in docs],
        "count": len(docs),
    }), 200


@sales_bp.get("/<int:document_id>")
def get_sale_route(document_id: int):
    """Get a sale document with its line items."""
    try:
        doc = sales_service.get_sale_document(document_id)
    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"document": doc.to_dict()}), 200


@sales_bp.patch("/<int:document_id>/payment")
def update_payment_route(document_id: int):
    """Record payment progress; totals and items stay untouched."""
    try:
        data = request.get_json(silent=True) or {}
        payment_status = data.get("payment_status")
        amount_paid = data.get("amount_paid")

        if payment_status is None or amount_paid is None:
            return jsonify({"error": "payment_status and amount_paid required"}), 400

        doc = sales_service.update_payment(document_id, payment_status, amount_paid)
        return jsonify({"document": doc.to_dict(include_items=False)}), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update payment")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:document_id>")
def delete_sale_route(document_id: int):
    """
    Explicit cascade delete: items go, ledger entries are detached, stock stays.
    """
    try:
        result = sales_service.delete_sale_document(document_id)
        return jsonify(result), 200

    except BillingError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete sale document")
        return jsonify({"error": "Internal server error"}), 500
