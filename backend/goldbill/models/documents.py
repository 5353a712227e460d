from __future__ import annotations

from ..extensions import db
from goldbill.time_utils import to_utc_z


VARIANT_INVOICE = "INVOICE"
VARIANT_BILL = "BILL"
VARIANT_EXCHANGE_BILL = "EXCHANGE_BILL"

PAYMENT_PENDING = "pending"
PAYMENT_PARTIAL = "partial"
PAYMENT_PAID = "paid"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PARTIAL, PAYMENT_PAID)


def _money(value):
    return str(value) if value is not None else None


class SaleDocument(db.Model):
    """
    Sale document: quotation invoice, cash bill, or gold-exchange bill.

    One table for all three variants. The old-material block is only
    populated for EXCHANGE_BILL rows.

    APPEND-ONLY: totals and items are fixed at creation. Only payment_status
    and amount_paid change afterwards (sales_service.update_payment).
    """
    __tablename__ = "sale_documents"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_sale_documents_number"),
        db.UniqueConstraint("idempotency_key", name="uq_sale_documents_idempotency_key"),
        db.Index("ix_sale_documents_variant_created", "variant", "created_at"),
        db.Index("ix_sale_documents_payment_status", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # INV-2026-000001, BILL-2026-000001, EXB-2026-000001
    document_number = db.Column(db.String(64), nullable=False)
    variant = db.Column(db.String(16), nullable=False, index=True)

    # Customer reference plus the snapshot printed on the document
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_address = db.Column(db.Text, nullable=True)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_percentage = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    discount_percentage = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING)
    amount_paid = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    # Exchange block (EXCHANGE_BILL only)
    old_material_weight = db.Column(db.Numeric(12, 3), nullable=True)
    old_material_purity = db.Column(db.String(32), nullable=True)
    old_material_rate = db.Column(db.Numeric(14, 4), nullable=True)
    old_material_value = db.Column(db.Numeric(14, 2), nullable=True)
    exchange_rate = db.Column(db.Numeric(14, 4), nullable=True)
    exchange_difference = db.Column(db.Numeric(14, 2), nullable=True)

    # Client-supplied key, stored as-is; uniqueness is enforced by the table
    idempotency_key = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("sale_documents", lazy=True))
    items = db.relationship(
        "LineItem",
        back_populates="document",
        order_by="LineItem.position",
        lazy=True,
    )

    @property
    def is_exchange(self) -> bool:
        return self.variant == VARIANT_EXCHANGE_BILL

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "variant": self.variant,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_address": self.customer_address,
            "subtotal": _money(self.subtotal),
            "tax_percentage": _money(self.tax_percentage),
            "tax_amount": _money(self.tax_amount),
            "discount_percentage": _money(self.discount_percentage),
            "discount_amount": _money(self.discount_amount),
            "total_amount": _money(self.total_amount),
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "amount_paid": _money(self.amount_paid),
            "notes": self.notes,
            "idempotency_key": self.idempotency_key,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if self.is_exchange:
            data.update({
                "old_material_weight": _money(self.old_material_weight),
                "old_material_purity": self.old_material_purity,
                "old_material_rate": _money(self.old_material_rate),
                "old_material_value": _money(self.old_material_value),
                "exchange_rate": _money(self.exchange_rate),
                "exchange_difference": _money(self.exchange_difference),
            })
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            # Stock movements this document caused, with the before/after snapshot
            data["ledger_entries"] = [entry.to_dict() for entry in self.ledger_entries]
        return data


class LineItem(db.Model):
    """One product line on a sale document. Immutable once persisted."""
    __tablename__ = "line_items"
    __table_args__ = (
        db.UniqueConstraint("document_id", "position", name="uq_line_items_document_position"),
        db.CheckConstraint("quantity >= 1", name="ck_line_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("sale_documents.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    # Absent for ad-hoc lines; cleared if the product is hard-deleted
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    weight = db.Column(db.Numeric(12, 3), nullable=False)
    rate = db.Column(db.Numeric(14, 4), nullable=False)
    making_charge = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    wastage_charge = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    # Unrounded, wide enough for weight x rate; rounding happens once on the document totals
    total = db.Column(db.Numeric(20, 7), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    document = db.relationship("SaleDocument", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "weight": _money(self.weight),
            "rate": _money(self.rate),
            "making_charge": _money(self.making_charge),
            "wastage_charge": _money(self.wastage_charge),
            "quantity": self.quantity,
            "total": _money(self.total),
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Monotonic document counters per (document_type, year).

    WHY: timestamp-derived numbers collide under load; the counter is bumped
    with an atomic UPDATE inside the sale's own transaction.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "year", name="uq_doc_sequences_type_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "year": self.year,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
