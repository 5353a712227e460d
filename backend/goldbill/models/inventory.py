from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from goldbill.time_utils import to_utc_z


TX_INITIAL = "initial"
TX_SALE_OUT = "sale_out"
TX_ADJUSTMENT = "adjustment"
TRANSACTION_TYPES = (TX_INITIAL, TX_SALE_OUT, TX_ADJUSTMENT)


class StockLedgerEntry(db.Model):
    """
    Append-only audit row for one stock change.

    INVARIANTS:
    - stock_after = stock_before + quantity_delta
    - Folding every entry of a product in id order, starting from zero,
      reproduces Product.stock_quantity. The opening stock is the product's
      first entry (transaction_type='initial'). created_at is informational
      only: some backends stamp it at transaction start, not at insert.

    IMMUTABLE: ORM updates and deletes are refused (see listeners below).
    The only bulk statements that touch this table are the explicit cascades
    in sales_service / products_service.
    """
    __tablename__ = "stock_ledger_entries"
    __table_args__ = (
        db.Index("ix_stock_ledger_product_created", "product_id", "created_at"),
        db.CheckConstraint("stock_after = stock_before + quantity_delta", name="ck_stock_ledger_balance"),
        db.CheckConstraint("stock_after >= 0", name="ck_stock_ledger_after_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)

    quantity_delta = db.Column(db.Integer, nullable=False)
    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=False)

    # Originating document; cleared if that document is deleted, the number stays
    document_id = db.Column(db.Integer, db.ForeignKey("sale_documents.id"), nullable=True, index=True)
    document_number = db.Column(db.String(64), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    product = db.relationship("Product", backref=db.backref("ledger_entries", lazy=True))
    document = db.relationship(
        "SaleDocument",
        backref=db.backref("ledger_entries", lazy=True, order_by="StockLedgerEntry.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "transaction_type": self.transaction_type,
            "quantity_delta": self.quantity_delta,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "reason": self.reason,
            "document_id": self.document_id,
            "document_number": self.document_number,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockLedgerEntry, "before_update")
def _refuse_ledger_update(mapper, connection, target):
    raise ValueError(f"stock ledger entry {target.id} is append-only")


@event.listens_for(StockLedgerEntry, "before_delete")
def _refuse_ledger_delete(mapper, connection, target):
    raise ValueError(f"stock ledger entry {target.id} is append-only")
