"""Stock ledger core: products, movement ledger, daily balances, transfers, verification

Revision ID: 20240101_stock_ledger_core
Revises:
Create Date: 2024-01-01 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20240101_stock_ledger_core"
down_revision = None
branch_labels = None
depends_on = None

_OPEN_STATUS_SQL = "status IN ('PENDING', 'IN_TRANSIT')"


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_code", sa.String(length=50), nullable=False),
        sa.Column("item_code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("counter_id", sa.Integer(), nullable=False),
        sa.Column("box_id", sa.Integer(), nullable=True),
        sa.Column("mrp_cents", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_code", "item_code", name="uq_products_tenant_item_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_products_tenant_code", "products", ["tenant_code"], unique=False)
    op.create_index("ix_products_tenant_active", "products", ["tenant_code", "is_active"], unique=False)
    op.create_index("ix_products_tenant_category", "products", ["tenant_code", "category_id"], unique=False)

    op.create_table(
        "movement_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_code", sa.String(length=50), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("tag_label", sa.String(length=50), nullable=True),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_value_cents", sa.BigInteger(), nullable=True),
        sa.Column("total_value_cents", sa.BigInteger(), nullable=True),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("counter_id", sa.Integer(), nullable=False),
        sa.Column("box_id", sa.Integer(), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("reference_number", sa.String(length=100), nullable=True),
        sa.Column("reference_kind", sa.String(length=50), nullable=True),
        sa.Column("remarks", sa.String(length=500), nullable=True),
        sa.Column("actor", sa.String(length=100), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_movement_events_tenant_code", "movement_events", ["tenant_code"], unique=False)
    op.create_index("ix_movement_events_product_id", "movement_events", ["product_id"], unique=False)
    op.create_index("ix_movement_events_tag_label", "movement_events", ["tag_label"], unique=False)
    op.create_index("ix_movement_events_kind", "movement_events", ["kind"], unique=False)
    op.create_index(
        "ix_movements_tenant_product_date", "movement_events", ["tenant_code", "product_id", "business_date"], unique=False
    )
    op.create_index(
        "ix_movements_tenant_date_branch",
        "movement_events",
        ["tenant_code", "business_date", "branch_id", "counter_id"],
        unique=False,
    )
    op.create_index("ix_movements_tenant_reference", "movement_events", ["tenant_code", "reference_number"], unique=False)

    op.create_table(
        "daily_balances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_code", sa.String(length=50), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("balance_date", sa.Date(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("counter_id", sa.Integer(), nullable=False),
        sa.Column("box_id", sa.Integer(), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("opening_qty", sa.Integer(), nullable=False),
        sa.Column("added_qty", sa.Integer(), nullable=False),
        sa.Column("sold_qty", sa.Integer(), nullable=False),
        sa.Column("returned_qty", sa.Integer(), nullable=False),
        sa.Column("transfer_in_qty", sa.Integer(), nullable=False),
        sa.Column("transfer_out_qty", sa.Integer(), nullable=False),
        sa.Column("closing_qty", sa.Integer(), nullable=False),
        sa.Column("opening_value_cents", sa.BigInteger(), nullable=False),
        sa.Column("added_value_cents", sa.BigInteger(), nullable=False),
        sa.Column("sold_value_cents", sa.BigInteger(), nullable=False),
        sa.Column("returned_value_cents", sa.BigInteger(), nullable=False),
        sa.Column("transfer_in_value_cents", sa.BigInteger(), nullable=False),
        sa.Column("transfer_out_value_cents", sa.BigInteger(), nullable=False),
        sa.Column("closing_value_cents", sa.BigInteger(), nullable=False),
        sa.Column("event_count", sa.Integer(), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_code", "product_id", "balance_date", name="uq_daily_balances_tenant_product_date"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_daily_balances_product_id", "daily_balances", ["product_id"], unique=False)
    op.create_index("ix_daily_balances_tenant_date", "daily_balances", ["tenant_code", "balance_date"], unique=False)
    op.create_index(
        "ix_daily_balances_tenant_date_branch",
        "daily_balances",
        ["tenant_code", "balance_date", "branch_id", "counter_id"],
        unique=False,
    )

    op.create_table(
        "stock_transfers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_code", sa.String(length=50), nullable=False),
        sa.Column("transfer_number", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("tag_label", sa.String(length=50), nullable=True),
        sa.Column("transfer_type", sa.String(length=20), nullable=False),
        sa.Column("source_branch_id", sa.Integer(), nullable=False),
        sa.Column("source_counter_id", sa.Integer(), nullable=False),
        sa.Column("source_box_id", sa.Integer(), nullable=True),
        sa.Column("destination_branch_id", sa.Integer(), nullable=False),
        sa.Column("destination_counter_id", sa.Integer(), nullable=False),
        sa.Column("destination_box_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=True),
        sa.Column("remarks", sa.String(length=500), nullable=True),
        sa.Column("created_by", sa.String(length=100), nullable=True),
        sa.Column("approved_by", sa.String(length=100), nullable=True),
        sa.Column("rejected_by", sa.String(length=100), nullable=True),
        sa.Column("completed_by", sa.String(length=100), nullable=True),
        sa.Column("cancelled_by", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.String(length=500), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=500), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_code", "transfer_number", name="uq_stock_transfers_tenant_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_transfers_tenant_code", "stock_transfers", ["tenant_code"], unique=False)
    op.create_index("ix_stock_transfers_product_id", "stock_transfers", ["product_id"], unique=False)
    op.create_index("ix_stock_transfers_status", "stock_transfers", ["status"], unique=False)
    op.create_index("ix_stock_transfers_tenant_status", "stock_transfers", ["tenant_code", "status"], unique=False)
    op.create_index(
        "ix_stock_transfers_source", "stock_transfers", ["tenant_code", "source_branch_id", "source_counter_id"], unique=False
    )
    # At most one open transfer per product
    op.create_index(
        "uq_stock_transfers_open_product",
        "stock_transfers",
        ["tenant_code", "product_id"],
        unique=True,
        sqlite_where=sa.text(_OPEN_STATUS_SQL),
        postgresql_where=sa.text(_OPEN_STATUS_SQL),
    )

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_code", sa.String(length=50), nullable=False),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_code", "document_type", name="uq_doc_sequences_tenant_type"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_document_sequences_tenant_code", "document_sequences", ["tenant_code"], unique=False)
    op.create_index("ix_document_sequences_document_type", "document_sequences", ["document_type"], unique=False)

    op.create_table(
        "verification_sessions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_code", sa.String(length=50), nullable=False),
        sa.Column("session_name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("verification_date", sa.Date(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("counter_id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("total_scanned", sa.Integer(), nullable=False),
        sa.Column("matched_count", sa.Integer(), nullable=False),
        sa.Column("unmatched_count", sa.Integer(), nullable=False),
        sa.Column("missing_count", sa.Integer(), nullable=False),
        sa.Column("matched_value_cents", sa.BigInteger(), nullable=False),
        sa.Column("unmatched_value_cents", sa.BigInteger(), nullable=False),
        sa.Column("missing_value_cents", sa.BigInteger(), nullable=False),
        sa.Column("verified_by", sa.String(length=100), nullable=True),
        sa.Column("remarks", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_verification_sessions_tenant_code", "verification_sessions", ["tenant_code"], unique=False)
    op.create_index("ix_verification_sessions_status", "verification_sessions", ["status"], unique=False)
    op.create_index(
        "ix_verification_sessions_tenant_date", "verification_sessions", ["tenant_code", "verification_date"], unique=False
    )

    op.create_table(
        "verification_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.Integer(), nullable=False),
        sa.Column("item_code", sa.String(length=64), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=True),
        sa.Column("line_status", sa.String(length=16), nullable=False),
        sa.Column("value_cents", sa.BigInteger(), nullable=False),
        sa.Column("scanned_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["session_id"], ["verification_sessions.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_id", "item_code", name="uq_verification_lines_session_item"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_verification_lines_session_id", "verification_lines", ["session_id"], unique=False)


def downgrade():
    op.drop_table("verification_lines")
    op.drop_table("verification_sessions")
    op.drop_table("document_sequences")
    op.drop_index("uq_stock_transfers_open_product", table_name="stock_transfers")
    op.drop_table("stock_transfers")
    op.drop_table("daily_balances")
    op.drop_table("movement_events")
    op.drop_table("products")
