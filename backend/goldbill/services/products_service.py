# Overview: Service-layer operations for the product catalog hooks the billing core relies on.

from __future__ import annotations

from flask import current_app
from sqlalchemy import delete, update

from ..extensions import db
from ..models import Product, LineItem, StockLedgerEntry
from ..models.products import PRODUCT_STATUS_INACTIVE
from ..errors import ReferentialConflict, ValidationError
from ..validation import coerce_int
from .calculations import check_places, to_decimal, ZERO, WEIGHT_PLACES, RATE_PLACES
from .concurrency import unit_of_work
from .stock_ledger_service import get_product, record_initial_stock


PRODUCT_WRITABLE_FIELDS = {
    "sku", "name", "category", "unit_weight", "purity",
    "material_type", "current_rate", "min_stock_level",
}
PRODUCT_DECIMAL_PLACES = {"unit_weight": WEIGHT_PLACES, "current_rate": RATE_PLACES}


def _clean_product_fields(payload: dict) -> dict:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValidationError("name", "name is required")

    fields = {"name": name}
    for key in ("sku", "category", "purity", "material_type"):
        value = payload.get(key)
        if value is not None and str(value).strip():
            fields[key] = str(value).strip()

    for key, places in PRODUCT_DECIMAL_PLACES.items():
        value = payload.get(key)
        if value is not None:
            number = check_places(to_decimal(value, key), places, key)
            if number < ZERO:
                raise ValidationError(key, f"{key} cannot be negative")
            fields[key] = number

    if payload.get("min_stock_level") is not None:
        level = coerce_int(payload["min_stock_level"], "min_stock_level")
        if level < 0:
            raise ValidationError("min_stock_level", "min_stock_level cannot be negative")
        fields["min_stock_level"] = level

    unknown = set(payload) - PRODUCT_WRITABLE_FIELDS - {"stock_quantity"}
    if unknown:
        raise ValidationError(sorted(unknown)[0], f"unknown field(s): {', '.join(sorted(unknown))}")
    return fields


def create_product(payload: dict) -> Product:
    """
    Create a product with its opening stock.

    The opening quantity goes through the ledger as an 'initial' entry, so
    replaying the ledger from zero reproduces stock from day one.
    """
    fields = _clean_product_fields(payload)
    opening = payload.get("stock_quantity", 0)
    opening = coerce_int(opening, "stock_quantity")
    if opening < 0:
        raise ValidationError("stock_quantity", "stock_quantity cannot be negative")

    with unit_of_work():
        product = Product(stock_quantity=0, **fields)
        db.session.add(product)
        db.session.flush()
        record_initial_stock(product, opening)

    current_app.logger.info("Product created id=%s name=%r opening_stock=%s", product.id, product.name, opening)
    return product


def deactivate_product(product_id: int) -> Product:
    """Soft delete: keeps history intact, blocks further sales."""
    with unit_of_work():
        product = get_product(product_id, lock=True)
        product.status = PRODUCT_STATUS_INACTIVE
    current_app.logger.info("Product deactivated id=%s", product_id)
    return product


def delete_product(product_id: int, *, cascade: bool = False) -> dict:
    """
    Hard delete a product.

    Without cascade, any line item or ledger entry referencing the product
    raises ReferentialConflict. With cascade, line items are detached (they
    keep their product_name snapshot), the product's ledger entries are
    removed, and then the product, all in one transaction.
    """
    with unit_of_work():
        get_product(product_id, lock=True)

        line_refs = db.session.query(LineItem).filter_by(product_id=product_id).count()
        ledger_refs = db.session.query(StockLedgerEntry).filter_by(product_id=product_id).count()

        if (line_refs or ledger_refs) and not cascade:
            raise ReferentialConflict(
                f"Product {product_id} is referenced by existing documents or ledger entries",
                details={
                    "product_id": product_id,
                    "line_items": line_refs,
                    "ledger_entries": ledger_refs,
                    "hint": "deactivate the product, or delete with cascade",
                },
            )

        detached = db.session.execute(
            update(LineItem)
            .where(LineItem.product_id == product_id)
            .values(product_id=None)
            .execution_options(synchronize_session=False)
        ).rowcount
        removed = db.session.execute(
            delete(StockLedgerEntry)
            .where(StockLedgerEntry.product_id == product_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.session.execute(
            delete(Product)
            .where(Product.id == product_id)
            .execution_options(synchronize_session=False)
        )

    if cascade:
        current_app.logger.warning(
            "Product %s deleted with cascade: %s line items detached, %s ledger entries removed",
            product_id, detached, removed,
        )
    return {
        "product_id": product_id,
        "line_items_detached": detached,
        "ledger_entries_removed": removed,
    }
