"""Initial servicebook schema: stock ledger, sales documents, recurring contracts

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_initial"
down_revision = None
branch_labels = None
depends_on = None


PENDING_WHERE = sa.text("status IN ('scheduled', 'in_progress')")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    ]


def upgrade():
    op.create_table(
        "stock_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("unit_price_cents", sa.Integer(), nullable=True),
        sa.Column("initial_quantity", sa.Integer(), nullable=False),
        sa.Column("quantity_on_hand", sa.Integer(), nullable=False),
        sa.Column("reorder_threshold", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("quantity_on_hand >= 0", name="ck_stock_items_qoh_non_negative"),
        sa.CheckConstraint("initial_quantity >= 0", name="ck_stock_items_initial_non_negative"),
        sa.CheckConstraint("reorder_threshold >= 0", name="ck_stock_items_reorder_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_items_active_name", "stock_items", ["is_active", "name"], unique=False)

    op.create_table(
        "stock_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(length=16), nullable=False),
        sa.Column("quantity_delta", sa.Integer(), nullable=False),
        sa.Column("previous_quantity", sa.Integer(), nullable=False),
        sa.Column("new_quantity", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(length=16), nullable=False),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.CheckConstraint("transaction_type IN ('sale', 'return', 'adjustment')", name="ck_stock_tx_type"),
        sa.CheckConstraint("reference_type IN ('invoice', 'service', 'manual')", name="ck_stock_tx_reference_type"),
        sa.CheckConstraint("quantity_delta <> 0", name="ck_stock_tx_delta_non_zero"),
        sa.ForeignKeyConstraint(["product_id"], ["stock_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_transactions_product_id", "stock_transactions", ["product_id"], unique=False)
    op.create_index("ix_stock_transactions_transaction_type", "stock_transactions", ["transaction_type"], unique=False)
    op.create_index("ix_stock_transactions_created_by", "stock_transactions", ["created_by"], unique=False)
    op.create_index("ix_stock_transactions_created_at", "stock_transactions", ["created_at"], unique=False)
    op.create_index("ix_stock_tx_product_created", "stock_transactions", ["product_id", "created_at"], unique=False)
    op.create_index("ix_stock_tx_reference", "stock_transactions", ["reference_type", "reference_id"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_document_sequences_document_type", "document_sequences", ["document_type"], unique=False)

    op.create_table(
        "recurring_contracts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("contract_number", sa.String(length=64), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("source_document_id", sa.Integer(), nullable=True),
        sa.Column("renewed_from_id", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("interval_months", sa.Integer(), nullable=False),
        sa.Column("total_occurrences_included", sa.Integer(), nullable=False),
        sa.Column("occurrences_completed", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("next_occurrence_date", sa.Date(), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_by", sa.Integer(), nullable=True),
        sa.Column("end_reason", sa.String(length=255), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint("interval_months >= 1", name="ck_contracts_interval_positive"),
        sa.CheckConstraint("occurrences_completed >= 0", name="ck_contracts_completed_non_negative"),
        sa.CheckConstraint("status IN ('active', 'completed', 'cancelled')", name="ck_contracts_status"),
        sa.ForeignKeyConstraint(["renewed_from_id"], ["recurring_contracts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("contract_number", name="uq_contracts_number"),
        sa.UniqueConstraint("renewed_from_id", name="uq_contracts_renewed_from"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_recurring_contracts_source_document_id", "recurring_contracts", ["source_document_id"], unique=False)
    op.create_index("ix_recurring_contracts_status", "recurring_contracts", ["status"], unique=False)
    op.create_index("ix_recurring_contracts_next_occurrence_date", "recurring_contracts", ["next_occurrence_date"], unique=False)
    op.create_index("ix_contracts_status_end_date", "recurring_contracts", ["status", "end_date"], unique=False)
    op.create_index("ix_contracts_customer", "recurring_contracts", ["customer_id"], unique=False)

    op.create_table(
        "service_occurrences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("contract_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_by", sa.Integer(), nullable=True),
        sa.Column("completed_date", sa.Date(), nullable=True),
        sa.Column("completed_by", sa.Integer(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "status IN ('scheduled', 'in_progress', 'completed', 'cancelled')",
            name="ck_service_occurrences_status",
        ),
        sa.ForeignKeyConstraint(["contract_id"], ["recurring_contracts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_service_occurrences_contract_id", "service_occurrences", ["contract_id"], unique=False)
    op.create_index("ix_service_occurrences_status_date", "service_occurrences", ["status", "scheduled_date"], unique=False)
    # At most one scheduled/in_progress occurrence per contract
    op.create_index(
        "uq_service_occurrences_one_pending",
        "service_occurrences",
        ["contract_id"],
        unique=True,
        sqlite_where=PENDING_WHERE,
        postgresql_where=PENDING_WHERE,
    )

    op.create_table(
        "sales_documents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(length=16), nullable=False),
        sa.Column("document_number", sa.String(length=64), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("document_date", sa.Date(), nullable=False),
        sa.Column("service_occurrence_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("deleted_by", sa.Integer(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint("document_type IN ('invoice', 'service')", name="ck_sales_docs_type"),
        sa.CheckConstraint("status IN ('open', 'deleted')", name="ck_sales_docs_status"),
        sa.ForeignKeyConstraint(["service_occurrence_id"], ["service_occurrences.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", "document_number", name="uq_sales_docs_type_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_documents_service_occurrence_id", "sales_documents", ["service_occurrence_id"], unique=False)
    op.create_index("ix_sales_documents_status", "sales_documents", ["status"], unique=False)
    op.create_index("ix_sales_docs_customer", "sales_documents", ["customer_id"], unique=False)
    op.create_index("ix_sales_docs_type_status", "sales_documents", ["document_type", "status"], unique=False)

    op.create_table(
        "sales_document_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity >= 0", name="ck_sales_doc_lines_qty_non_negative"),
        sa.ForeignKeyConstraint(["document_id"], ["sales_documents.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["stock_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_document_lines_document_id", "sales_document_lines", ["document_id"], unique=False)
    op.create_index("ix_sales_document_lines_product_id", "sales_document_lines", ["product_id"], unique=False)


def downgrade():
    op.drop_table("sales_document_lines")
    op.drop_table("sales_documents")
    op.drop_index("uq_service_occurrences_one_pending", table_name="service_occurrences")
    op.drop_table("service_occurrences")
    op.drop_table("recurring_contracts")
    op.drop_table("document_sequences")
    op.drop_table("stock_transactions")
    op.drop_table("stock_items")
