# Overview: Service-layer operations for the stock ledger; the only writer of Product.stock_quantity.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import case, func, update
from sqlalchemy.orm.util import identity_key

from ..extensions import db
from ..models import Product, StockLedgerEntry
from ..models.inventory import TX_INITIAL, TX_SALE_OUT, TX_ADJUSTMENT, TRANSACTION_TYPES
from ..models.products import PRODUCT_STATUS_ACTIVE
from ..errors import InsufficientStock, NotFound, ValidationError
from .calculations import round2, to_decimal
from .concurrency import lock_for_update, unit_of_work
"""
Goldbill Stock Ledger Invariants (authoritative)

- Product.stock_quantity is never negative and changes only through this module.
- Every change appends exactly one StockLedgerEntry in the same transaction,
  recording stock_before, quantity_delta and stock_after.
- The write is a compare-and-swap: UPDATE ... WHERE stock_quantity + delta >= 0.
  If no row is affected the change is refused and nothing is written, even if
  a concurrent transaction drained stock after our own read.
- deduct()/adjust() flush but never commit; they run inside the caller's unit
  of work. adjust_stock() is the standalone entry point with its own commit.
- Replaying a product's entries in id order from zero reproduces
  stock_quantity. Ids are drawn at insert while the product row is locked,
  so they follow the order the changes were applied.
"""


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def _current_stock(product_id: int) -> int | None:
    return db.session.query(Product.stock_quantity).filter_by(id=product_id).scalar()


def _apply_delta(
    *,
    product_id: int,
    delta: int,
    transaction_type: str,
    reason: str,
    document_id: int | None = None,
    document_number: str | None = None,
) -> StockLedgerEntry:
    """Core compare-and-swap write plus ledger append, without commit."""
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity + delta >= 0)
        .values(stock_quantity=Product.stock_quantity + delta)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    cached = db.session.identity_map.get(identity_key(Product, product_id))
    if cached is not None:
        db.session.expire(cached, ["stock_quantity"])

    if result.rowcount != 1:
        available = _current_stock(product_id)
        if available is None:
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
        raise InsufficientStock(product_id=product_id, available=available, required=-delta)

    after = _current_stock(product_id)
    before = after - delta

    entry = StockLedgerEntry(
        product_id=product_id,
        transaction_type=transaction_type,
        quantity_delta=delta,
        stock_before=before,
        stock_after=after,
        reason=reason,
        document_id=document_id,
        document_number=document_number,
    )
    db.session.add(entry)
    db.session.flush()

    current_app.logger.debug(
        "Stock ledger %s product=%s delta=%s %s->%s",
        transaction_type, product_id, delta, before, after,
    )
    return entry


def deduct(
    product_id: int,
    quantity: int,
    reason: str,
    reference_document_id: int | None = None,
    reference_document_number: str | None = None,
) -> StockLedgerEntry:
    """
    Remove quantity units of a product for a sale.

    Raises InsufficientStock (no mutation) when stock would go negative.
    Must be called inside a unit of work; does not commit.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity", "quantity must be a positive integer")
    return _apply_delta(
        product_id=product_id,
        delta=-quantity,
        transaction_type=TX_SALE_OUT,
        reason=reason,
        document_id=reference_document_id,
        document_number=reference_document_number,
    )


def adjust(product_id: int, delta: int, reason: str) -> StockLedgerEntry:
    """Signed manual correction inside the caller's unit of work."""
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("quantity_delta", "quantity_delta must be an integer")
    if delta == 0:
        raise ValidationError("quantity_delta", "quantity_delta cannot be zero")
    if not reason or not str(reason).strip():
        raise ValidationError("reason", "reason is required")
    return _apply_delta(
        product_id=product_id,
        delta=delta,
        transaction_type=TX_ADJUSTMENT,
        reason=str(reason).strip(),
    )


def record_initial_stock(product: Product, quantity: int) -> StockLedgerEntry:
    """
    Opening balance for a freshly created product (stock_quantity must be 0).

    Zero opening stock still writes an entry so every product's history
    starts with an 'initial' row.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise ValidationError("stock_quantity", "stock_quantity must be a non-negative integer")
    if quantity == 0:
        entry = StockLedgerEntry(
            product_id=product.id,
            transaction_type=TX_INITIAL,
            quantity_delta=0,
            stock_before=0,
            stock_after=0,
            reason="Opening stock",
        )
        db.session.add(entry)
        db.session.flush()
        return entry
    return _apply_delta(
        product_id=product.id,
        delta=quantity,
        transaction_type=TX_INITIAL,
        reason="Opening stock",
    )


def adjust_stock(product_id: int, delta: int, reason: str) -> StockLedgerEntry:
    """
    Standalone stock adjustment: one unit of work, committed on success.
    """
    with unit_of_work():
        get_product(product_id, lock=True)
        entry = adjust(product_id, delta, reason)

    current_app.logger.info(
        "Stock adjusted product=%s delta=%s now=%s reason=%r",
        product_id, delta, entry.stock_after, entry.reason,
    )
    return entry


def replay_stock(product_id: int) -> dict:
    """
    Fold a product's ledger from zero and compare with stored stock.

    Also checks the chain: each entry's stock_before must equal the running
    balance left by the previous entry.
    """
    product = get_product(product_id)
    entries = (
        db.session.query(StockLedgerEntry)
        .filter_by(product_id=product_id)
        .order_by(StockLedgerEntry.id.asc())
        .all()
    )

    running = 0
    broken_links = []
    for entry in entries:
        if entry.stock_before != running:
            broken_links.append(entry.id)
        running += entry.quantity_delta

    return {
        "product_id": product.id,
        "stock_quantity": product.stock_quantity,
        "ledger_quantity": running,
        "entry_count": len(entries),
        "broken_links": broken_links,
        "consistent": running == product.stock_quantity and not broken_links,
    }


def list_ledger_entries(
    *,
    product_id: int | None = None,
    transaction_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 200,
) -> list[StockLedgerEntry]:
    if transaction_type is not None and transaction_type not in TRANSACTION_TYPES:
        raise ValidationError("transaction_type", f"transaction_type must be one of {', '.join(TRANSACTION_TYPES)}")

    q = db.session.query(StockLedgerEntry)
    if product_id is not None:
        q = q.filter(StockLedgerEntry.product_id == product_id)
    if transaction_type is not None:
        q = q.filter(StockLedgerEntry.transaction_type == transaction_type)
    if start is not None:
        q = q.filter(StockLedgerEntry.created_at >= start)
    if end is not None:
        q = q.filter(StockLedgerEntry.created_at <= end)

    return q.order_by(StockLedgerEntry.id.desc()).limit(limit).all()


def list_low_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(
            Product.status == PRODUCT_STATUS_ACTIVE,
            Product.stock_quantity <= Product.min_stock_level,
        )
        .order_by(Product.stock_quantity.asc(), Product.id.asc())
        .all()
    )


def inventory_overview() -> dict:
    """
    Headline figures over active products: count, units on hand, how many
    sit at or below their minimum, and stock value at current rates.

    Products without a current_rate count as zero value.
    """
    row = (
        db.session.query(
            func.count(Product.id).label("total_products"),
            func.coalesce(func.sum(Product.stock_quantity), 0).label("total_stock"),
            func.coalesce(
                func.sum(case((Product.stock_quantity <= Product.min_stock_level, 1), else_=0)),
                0,
            ).label("low_stock_count"),
            func.sum(Product.stock_quantity * func.coalesce(Product.current_rate, 0)).label("total_value"),
        )
        .filter(Product.status == PRODUCT_STATUS_ACTIVE)
        .one()
    )
    total_value = to_decimal(row.total_value if row.total_value is not None else 0, "total_value")
    return {
        "total_products": int(row.total_products),
        "total_stock": int(row.total_stock),
        "low_stock_count": int(row.low_stock_count),
        "total_value": str(round2(total_value)),
    }
