"""Initial billing schema: products, customers, sale documents, stock ledger

Revision ID: 20261018_initial_billing
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_initial_billing"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("unit_weight", sa.Numeric(12, 3), nullable=True),
        sa.Column("purity", sa.String(length=32), nullable=True),
        sa.Column("material_type", sa.String(length=32), nullable=False, server_default="Gold"),
        sa.Column("current_rate", sa.Numeric(14, 4), nullable=True),
        sa.Column("stock_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_stock_level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_products_category", "products", ["category"])
    op.create_index("ix_products_material_type", "products", ["material_type"])
    op.create_index("ix_products_status", "products", ["status"])
    op.create_index("ix_products_status_name", "products", ["status", "name"])

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_customers_phone", "customers", ["phone"])

    op.create_table(
        "sale_documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_number", sa.String(length=64), nullable=False),
        sa.Column("variant", sa.String(length=16), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=True),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("customer_phone", sa.String(length=32), nullable=True),
        sa.Column("customer_address", sa.Text(), nullable=True),
        sa.Column("subtotal", sa.Numeric(14, 2), nullable=False),
        sa.Column("tax_percentage", sa.Numeric(6, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("discount_percentage", sa.Numeric(6, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=True),
        sa.Column("payment_status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("amount_paid", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("old_material_weight", sa.Numeric(12, 3), nullable=True),
        sa.Column("old_material_purity", sa.String(length=32), nullable=True),
        sa.Column("old_material_rate", sa.Numeric(14, 4), nullable=True),
        sa.Column("old_material_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("exchange_rate", sa.Numeric(14, 4), nullable=True),
        sa.Column("exchange_difference", sa.Numeric(14, 2), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("document_number", name="uq_sale_documents_number"),
        sa.UniqueConstraint("idempotency_key", name="uq_sale_documents_idempotency_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sale_documents_variant", "sale_documents", ["variant"])
    op.create_index("ix_sale_documents_customer_id", "sale_documents", ["customer_id"])
    op.create_index("ix_sale_documents_variant_created", "sale_documents", ["variant", "created_at"])
    op.create_index("ix_sale_documents_payment_status", "sale_documents", ["payment_status"])

    op.create_table(
        "line_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_id", sa.Integer(), sa.ForeignKey("sale_documents.id"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=True),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("weight", sa.Numeric(12, 3), nullable=False),
        sa.Column("rate", sa.Numeric(14, 4), nullable=False),
        sa.Column("making_charge", sa.Numeric(12, 2), nullable=False),
        sa.Column("wastage_charge", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("total", sa.Numeric(20, 7), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("document_id", "position", name="uq_line_items_document_position"),
        sa.CheckConstraint("quantity >= 1", name="ck_line_items_quantity_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_line_items_document_id", "line_items", ["document_id"])
    op.create_index("ix_line_items_product_id", "line_items", ["product_id"])

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("document_type", "year", name="uq_doc_sequences_type_year"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_document_sequences_document_type", "document_sequences", ["document_type"])

    op.create_table(
        "stock_ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("transaction_type", sa.String(length=16), nullable=False),
        sa.Column("quantity_delta", sa.Integer(), nullable=False),
        sa.Column("stock_before", sa.Integer(), nullable=False),
        sa.Column("stock_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=False),
        sa.Column("document_id", sa.Integer(), sa.ForeignKey("sale_documents.id"), nullable=True),
        sa.Column("document_number", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("stock_after = stock_before + quantity_delta", name="ck_stock_ledger_balance"),
        sa.CheckConstraint("stock_after >= 0", name="ck_stock_ledger_after_non_negative"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_ledger_entries_product_id", "stock_ledger_entries", ["product_id"])
    op.create_index("ix_stock_ledger_entries_transaction_type", "stock_ledger_entries", ["transaction_type"])
    op.create_index("ix_stock_ledger_entries_document_id", "stock_ledger_entries", ["document_id"])
    op.create_index("ix_stock_ledger_entries_created_at", "stock_ledger_entries", ["created_at"])
    op.create_index("ix_stock_ledger_product_created", "stock_ledger_entries", ["product_id", "created_at"])


def downgrade():
    op.drop_table("stock_ledger_entries")
    op.drop_table("document_sequences")
    op.drop_table("line_items")
    op.drop_table("sale_documents")
    op.drop_table("customers")
    op.drop_table("products")
