"""
Sales Service - the sale transaction orchestrator

WHY: A sale document, its line items, the stock deductions and the ledger
entries that explain them must land together or not at all. Everything from
the stock check to the last ledger write runs in one unit of work.

State per request:
    Received -> Validated -> StockChecked -> Persisted -> LedgerApplied -> Committed
Any failure goes to Aborted and the unit of work is rolled back.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import delete, or_, update

from ..extensions import db
from ..models import SaleDocument, LineItem, Product, Customer, StockLedgerEntry
from ..models.documents import (
    PAYMENT_PENDING,
    PAYMENT_PARTIAL,
    PAYMENT_PAID,
    PAYMENT_STATUSES,
)
from ..errors import BillingError, ValidationError, NotFound, InsufficientStock
from ..validation import SaleRequest, VARIANTS, parse_sale_request
from goldbill.time_utils import utcnow
from . import stock_ledger_service
from .calculations import (
    check_places,
    DocumentTotals,
    ExchangeResult,
    compute_totals,
    compute_exchange,
    discount_from_percentage,
    round2,
    to_decimal,
    ZERO,
    HUNDRED,
    MONEY_PLACES,
    PERCENT_PLACES,
)
from .concurrency import lock_for_update, unit_of_work
from .document_service import next_document_number

SALE_REASON = "Sale"


def _log_state(request: SaleRequest, state: str, **extra) -> None:
    current_app.logger.debug("Sale %s -> %s %s", request.variant, state, extra or "")


def _document_totals(request: SaleRequest) -> tuple[DocumentTotals, Decimal, Decimal]:
    tax_percentage = request.tax_percentage
    if tax_percentage is None:
        tax_percentage = check_places(
            to_decimal(current_app.config.get("DEFAULT_TAX_PERCENTAGE", "0"), "tax_percentage"),
            PERCENT_PLACES,
            "tax_percentage",
        )

    line_totals = [item.total for item in request.items]
    subtotal = round2(sum(line_totals, ZERO))

    discount_amount = request.discount_amount
    discount_percentage = request.discount_percentage
    if discount_amount is None:
        discount_amount = (
            discount_from_percentage(subtotal, discount_percentage)
            if discount_percentage is not None
            else ZERO
        )

    totals = compute_totals(line_totals, discount_amount, tax_percentage)

    if discount_percentage is None:
        discount_percentage = (
            round2(totals.discount_amount * HUNDRED / totals.subtotal)
            if totals.subtotal > ZERO
            else ZERO
        )
    return totals, tax_percentage, round2(discount_percentage)


def _derive_payment_status(amount_paid: Decimal, total: Decimal) -> str:
    if amount_paid <= ZERO:
        return PAYMENT_PENDING
    if amount_paid < total:
        return PAYMENT_PARTIAL
    return PAYMENT_PAID


def _resolve_payment(
    request: SaleRequest,
    totals: DocumentTotals,
    exchange: ExchangeResult | None,
) -> tuple[str, Decimal]:
    """
    Payment defaults.

    The amount due is the document total, or |difference| on an exchange
    bill. Without an explicit status an exchange bill follows the sign of the
    differential: the shop owes (paid, amount = |difference|) or the customer
    owes (status derived from amount_paid, pending when nothing was paid).
    amount_paid may never exceed the amount due.
    """
    due = abs(exchange.difference) if exchange is not None else totals.total_amount
    amount_paid = request.amount_paid

    if amount_paid is not None and amount_paid > due:
        raise ValidationError(
            "amount_paid",
            "amount_paid cannot exceed the amount due",
            details={"amount_paid": str(amount_paid), "amount_due": str(due)},
        )

    if request.payment_status is None:
        if amount_paid is None:
            if exchange is not None and not exchange.customer_owes:
                return PAYMENT_PAID, due
            amount_paid = ZERO
        return _derive_payment_status(amount_paid, due), amount_paid

    if amount_paid is None:
        amount_paid = due if request.payment_status == PAYMENT_PAID else ZERO
    return request.payment_status, amount_paid


def _resolve_customer(request: SaleRequest) -> SaleRequest:
    """Fill blank snapshot fields from the customer directory."""
    if request.customer_id is None:
        return request
    customer = db.session.query(Customer).filter_by(id=request.customer_id).first()
    if customer is None:
        raise ValidationError("customer_id", f"Customer {request.customer_id} not found")
    return replace(
        request,
        customer_name=request.customer_name or customer.name,
        customer_phone=request.customer_phone or customer.phone,
        customer_address=request.customer_address or customer.address,
    )


def _check_stock(request: SaleRequest) -> dict[int, Product]:
    """
    StockChecked: confirm every referenced product exists and, for
    stock-deducting variants, that current stock covers the whole document.

    Quantities for the same product on several lines are summed first, so a
    document is either fully satisfiable or rejected outright.
    """
    products: dict[int, Product] = {}
    required: dict[int, int] = {}

    for item in request.items:
        if item.product_id is None:
            continue
        if item.product_id not in products:
            product = lock_for_update(
                db.session.query(Product).filter_by(id=item.product_id).populate_existing()
            ).first()
            if product is None:
                raise ValidationError(
                    f"items[{item.position}].product_id",
                    f"Product {item.product_id} not found",
                )
            if request.rules.deducts_stock and not product.is_active:
                raise ValidationError(
                    f"items[{item.position}].product_id",
                    f"Product {item.product_id} is inactive",
                )
            products[item.product_id] = product
        required[item.product_id] = required.get(item.product_id, 0) + item.quantity

    if request.rules.deducts_stock:
        for product_id, qty in required.items():
            product = products[product_id]
            if product.stock_quantity < qty:
                raise InsufficientStock(
                    product_id=product_id,
                    available=product.stock_quantity,
                    required=qty,
                    product_name=product.name,
                )

    return products


def _persist(
    request: SaleRequest,
    totals: DocumentTotals,
    tax_percentage: Decimal,
    discount_percentage: Decimal,
    exchange: ExchangeResult | None,
    payment: tuple[str, Decimal],
    products: dict[int, Product],
) -> SaleDocument:
    created_at = request.created_at or utcnow()
    document_number = next_document_number(
        document_type=request.variant,
        prefix=request.rules.prefix,
        year=created_at.year,
        pad=current_app.config.get("DOCUMENT_NUMBER_PAD", 6),
    )
    payment_status, amount_paid = payment

    doc = SaleDocument(
        document_number=document_number,
        variant=request.variant,
        customer_id=request.customer_id,
        customer_name=request.customer_name,
        customer_phone=request.customer_phone,
        customer_address=request.customer_address,
        subtotal=totals.subtotal,
        tax_percentage=tax_percentage,
        tax_amount=totals.tax_amount,
        discount_percentage=discount_percentage,
        discount_amount=totals.discount_amount,
        total_amount=totals.total_amount,
        payment_method=request.payment_method,
        payment_status=payment_status,
        amount_paid=amount_paid,
        notes=request.notes,
        idempotency_key=request.idempotency_key,
        created_at=created_at,
        updated_at=created_at,
    )
    if exchange is not None:
        doc.old_material_weight = request.exchange.old_material_weight
        doc.old_material_purity = request.exchange.old_material_purity
        doc.old_material_rate = request.exchange.old_material_rate
        doc.old_material_value = exchange.old_value
        doc.exchange_rate = request.exchange.exchange_rate
        doc.exchange_difference = exchange.difference

    db.session.add(doc)
    db.session.flush()

    for item in request.items:
        product_name = item.product_name
        if product_name is None:
            product_name = products[item.product_id].name
        db.session.add(LineItem(
            document_id=doc.id,
            position=item.position,
            product_id=item.product_id,
            product_name=product_name,
            weight=item.weight,
            rate=item.rate,
            making_charge=item.making_charge,
            wastage_charge=item.wastage_charge,
            quantity=item.quantity,
            total=item.total,
        ))
    db.session.flush()
    return doc


def _apply_ledger(doc: SaleDocument, request: SaleRequest) -> list[StockLedgerEntry]:
    """LedgerApplied: one sale_out entry per stock-tracked line."""
    entries = []
    if not request.rules.deducts_stock:
        return entries
    for item in request.items:
        if item.product_id is None:
            continue
        entries.append(stock_ledger_service.deduct(
            item.product_id,
            item.quantity,
            SALE_REASON,
            reference_document_id=doc.id,
            reference_document_number=doc.document_number,
        ))
    return entries


def create_sale_document(payload, idempotency_key: str | None = None) -> SaleDocument:
    """
    Create an invoice, bill or exchange bill.

    payload is either a raw dict (validated here) or a SaleRequest.
    idempotency_key is stored on the document untouched; a duplicate key
    fails at commit as PersistenceFailure.

    Raises ValidationError (and subclasses) before touching the database,
    InsufficientStock at the pre-check or at ledger time, PersistenceFailure
    when the commit fails. Nothing persists on any failure.
    """
    request = payload if isinstance(payload, SaleRequest) else parse_sale_request(payload)
    if idempotency_key is not None:
        request = replace(request, idempotency_key=idempotency_key)
    _log_state(request, "Received", items=len(request.items))

    try:
        totals, tax_percentage, discount_percentage = _document_totals(request)
        exchange = None
        if request.exchange is not None:
            exchange = compute_exchange(
                request.exchange.old_material_weight,
                request.exchange.old_material_rate,
                totals.total_amount,
            )
        payment = _resolve_payment(request, totals, exchange)
        _log_state(request, "Validated", total=str(totals.total_amount))

        with unit_of_work():
            request = _resolve_customer(request)
            products = _check_stock(request)
            _log_state(request, "StockChecked", products=sorted(products))

            doc = _persist(request, totals, tax_percentage, discount_percentage, exchange, payment, products)
            _log_state(request, "Persisted", document_number=doc.document_number)

            entries = _apply_ledger(doc, request)
            _log_state(request, "LedgerApplied", entries=len(entries))
    except BillingError as e:
        current_app.logger.warning(
            "Sale %s aborted: %s %s", request.variant, type(e).__name__, e.details,
        )
        raise

    current_app.logger.info(
        "Sale committed %s variant=%s total=%s",
        doc.document_number, doc.variant, doc.total_amount,
    )
    return doc


def get_sale_document(document_id: int) -> SaleDocument:
    doc = db.session.get(SaleDocument, document_id)
    if doc is None:
        raise NotFound(f"Sale document {document_id} not found", details={"document_id": document_id})
    return doc


def list_sale_documents(
    *,
    variant: str | None = None,
    payment_status: str | None = None,
    customer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    search: str | None = None,
    limit: int = 200,
) -> list[SaleDocument]:
    q = db.session.query(SaleDocument)
    if variant:
        variant = variant.upper()
        if variant not in VARIANTS:
            raise ValidationError("variant", f"variant must be one of {', '.join(VARIANTS)}")
        q = q.filter(SaleDocument.variant == variant)
    if payment_status:
        q = q.filter(SaleDocument.payment_status == payment_status)
    if customer_id is not None:
        q = q.filter(SaleDocument.customer_id == customer_id)
    if start is not None:
        q = q.filter(SaleDocument.created_at >= start)
    if end is not None:
        q = q.filter(SaleDocument.created_at <= end)
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(or_(
            SaleDocument.document_number.ilike(term),
            SaleDocument.customer_name.ilike(term),
            SaleDocument.customer_phone.ilike(term),
        ))
    return q.order_by(SaleDocument.created_at.desc(), SaleDocument.id.desc()).limit(limit).all()


def update_payment(document_id: int, payment_status: str, amount_paid) -> SaleDocument:
    """
    Post-hoc payment update; the only mutation allowed on a stored document.
    """
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError("payment_status", f"payment_status must be one of {', '.join(PAYMENT_STATUSES)}")
    amount_paid = check_places(to_decimal(amount_paid, "amount_paid"), MONEY_PLACES, "amount_paid")
    if amount_paid < ZERO:
        raise ValidationError("amount_paid", "amount_paid cannot be negative")

    with unit_of_work():
        doc = lock_for_update(db.session.query(SaleDocument).filter_by(id=document_id)).first()
        if doc is None:
            raise NotFound(f"Sale document {document_id} not found", details={"document_id": document_id})
        doc.payment_status = payment_status
        doc.amount_paid = amount_paid
        doc.updated_at = utcnow()

    current_app.logger.info(
        "Payment updated %s status=%s amount_paid=%s",
        doc.document_number, payment_status, amount_paid,
    )
    return doc


def delete_sale_document(document_id: int) -> dict:
    """
    Explicit cascade delete of a document.

    Removes line items, clears ledger back-references (the entries keep
    their document_number snapshot and deltas, so stock replay still holds),
    then removes the document. Stock is not restored.
    """
    with unit_of_work():
        row = lock_for_update(
            db.session.query(SaleDocument.id, SaleDocument.document_number).filter_by(id=document_id)
        ).first()
        if row is None:
            raise NotFound(f"Sale document {document_id} not found", details={"document_id": document_id})

        detached = db.session.execute(
            update(StockLedgerEntry)
            .where(StockLedgerEntry.document_id == document_id)
            .values(document_id=None)
            .execution_options(synchronize_session=False)
        ).rowcount
        items_deleted = db.session.execute(
            delete(LineItem)
            .where(LineItem.document_id == document_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.session.execute(
            delete(SaleDocument)
            .where(SaleDocument.id == document_id)
            .execution_options(synchronize_session=False)
        )

    current_app.logger.warning(
        "Sale document %s deleted: %s items removed, %s ledger entries detached",
        row.document_number, items_deleted, detached,
    )
    return {
        "document_id": document_id,
        "document_number": row.document_number,
        "items_deleted": items_deleted,
        "ledger_entries_detached": detached,
    }
