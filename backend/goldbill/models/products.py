from __future__ import annotations

from ..extensions import db
from goldbill.time_utils import to_utc_z


PRODUCT_STATUS_ACTIVE = "active"
PRODUCT_STATUS_INACTIVE = "inactive"


def _str_or_none(value):
    return str(value) if value is not None else None


class Product(db.Model):
    """
    Sellable unit of jewelry inventory.

    STOCK: stock_quantity is a cached balance of the stock ledger. It is only
    ever written by stock_ledger_service, in the same transaction as the
    StockLedgerEntry that explains the change. A CHECK constraint keeps it
    non-negative at the database level as well.

    LIFECYCLE: products referenced by documents or ledger entries are
    soft-deactivated (status='inactive'), not deleted. Hard deletes go through
    products_service.delete_product(cascade=True).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_status_name", "status", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True, index=True)

    # Grams per unit; purity as karat/fineness label ("22K", "916")
    unit_weight = db.Column(db.Numeric(12, 3), nullable=True)
    purity = db.Column(db.String(32), nullable=True)
    material_type = db.Column(db.String(32), nullable=False, default="Gold", index=True)

    # Rate per gram used as the default line rate
    current_rate = db.Column(db.Numeric(14, 4), nullable=True)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_ACTIVE, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_active(self) -> bool:
        return self.status == PRODUCT_STATUS_ACTIVE

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "unit_weight": _str_or_none(self.unit_weight),
            "purity": self.purity,
            "material_type": self.material_type,
            "current_rate": _str_or_none(self.current_rate),
            "stock_quantity": self.stock_quantity,
            "min_stock_level": self.min_stock_level,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
