"""Initial POS engine schema

Revision ID: 20261019_posengine_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_posengine_initial"
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False)


def upgrade():
    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(16), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_locations"),
        sa.UniqueConstraint("code", name="uq_locations_code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "product_variants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("variant_name", sa.String(255), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("product_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_product_variants"),
        sa.UniqueConstraint("sku", name="uq_product_variants_sku"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("method_type", sa.String(16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.PrimaryKeyConstraint("id", name="pk_payment_methods"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payment_methods_method_type", "payment_methods", ["method_type"])

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("first_name", sa.String(128), nullable=False),
        sa.Column("last_name", sa.String(128), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("sms_opt_in", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_spent_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("visit_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_visit_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_customers"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "stock_levels",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("quantity_on_hand", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("quantity_reserved", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reorder_level", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("reorder_quantity", sa.Integer(), nullable=False, server_default=sa.text("10")),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("quantity_reserved >= 0", name="ck_stock_levels_reserved_non_negative"),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"], name="fk_stock_levels_variant_id_product_variants"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], name="fk_stock_levels_location_id_locations"),
        sa.PrimaryKeyConstraint("id", name="pk_stock_levels"),
        sa.UniqueConstraint("variant_id", "location_id", name="uq_stock_levels_variant_location"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_levels_location", "stock_levels", ["location_id"])

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(32), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("quantity_before", sa.Integer(), nullable=False),
        sa.Column("quantity_after", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(32), nullable=True),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"], name="fk_stock_movements_variant_id_product_variants"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], name="fk_stock_movements_location_id_locations"),
        sa.PrimaryKeyConstraint("id", name="pk_stock_movements"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.create_index("ix_stock_movements_transaction_type", ["transaction_type"], unique=False)
        batch_op.create_index("ix_stock_movements_actor_id", ["actor_id"], unique=False)
        batch_op.create_index("ix_stock_movements_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index(
            "ix_stock_movements_variant_location_occurred",
            ["variant_id", "location_id", "occurred_at"],
            unique=False,
        )
        batch_op.create_index("ix_stock_movements_reference", ["reference_type", "reference_id"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("sequence_key", sa.String(48), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], name="fk_document_sequences_location_id_locations"),
        sa.PrimaryKeyConstraint("id", name="pk_document_sequences"),
        sa.UniqueConstraint("location_id", "sequence_key", name="uq_document_sequences_location_key"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_document_sequences_location_id", "document_sequences", ["location_id"])

    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("terminal", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="OPEN"),
        sa.Column("opening_cash_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("closing_cash_cents", sa.Integer(), nullable=True),
        sa.Column("expected_cash_cents", sa.Integer(), nullable=True),
        sa.Column("cash_variance_cents", sa.Integer(), nullable=True),
        sa.Column("variance_status", sa.String(16), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reconciled_by", sa.Integer(), nullable=True),
        sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reconciliation_notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], name="fk_shifts_location_id_locations"),
        sa.PrimaryKeyConstraint("id", name="pk_shifts"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("shifts", schema=None) as batch_op:
        batch_op.create_index("ix_shifts_actor_id", ["actor_id"], unique=False)
        batch_op.create_index("ix_shifts_status", ["status"], unique=False)
        batch_op.create_index("ix_shifts_location_opened", ["location_id", "opened_at"], unique=False)
    op.create_index(
        "uq_shifts_actor_open",
        "shifts",
        ["actor_id"],
        unique=True,
        sqlite_where=sa.text("status = 'OPEN'"),
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_number", sa.String(64), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_reason", sa.String(255), nullable=True),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("is_parked", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by", sa.Integer(), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.String(255), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], name="fk_sales_location_id_locations"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], name="fk_sales_shift_id_shifts"),
        sa.ForeignKeyConstraint(["customer_id"], ["customers.id"], name="fk_sales_customer_id_customers"),
        sa.PrimaryKeyConstraint("id", name="pk_sales"),
        sa.UniqueConstraint("location_id", "sale_number", name="uq_sales_location_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sales", schema=None) as batch_op:
        batch_op.create_index("ix_sales_location_id", ["location_id"], unique=False)
        batch_op.create_index("ix_sales_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_sales_actor_id", ["actor_id"], unique=False)
        batch_op.create_index("ix_sales_status", ["status"], unique=False)
        batch_op.create_index("ix_sales_location_status_created", ["location_id", "status", "created_at"], unique=False)
        batch_op.create_index("ix_sales_shift_status", ["shift_id", "status"], unique=False)

    op.create_table(
        "sale_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("original_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], name="fk_sale_items_sale_id_sales"),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"], name="fk_sale_items_variant_id_product_variants"),
        sa.PrimaryKeyConstraint("id", name="pk_sale_items"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sale_items_sale_id", "sale_items", ["sale_id"])

    op.create_table(
        "sale_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("payment_method_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("tendered_cents", sa.Integer(), nullable=False),
        sa.Column("change_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reference_number", sa.String(128), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], name="fk_sale_payments_sale_id_sales"),
        sa.ForeignKeyConstraint(["payment_method_id"], ["payment_methods.id"], name="fk_sale_payments_payment_method_id_payment_methods"),
        sa.PrimaryKeyConstraint("id", name="pk_sale_payments"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("sale_payments", schema=None) as batch_op:
        batch_op.create_index("ix_sale_payments_sale_id", ["sale_id"], unique=False)
        batch_op.create_index("ix_sale_payments_payment_method_id", ["payment_method_id"], unique=False)

    op.create_table(
        "z_reports",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("report_number", sa.String(64), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("report_date", sa.Date(), nullable=False),
        sa.Column("gross_sales_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discounts_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("returns_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("net_sales_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_collected_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("cash_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("card_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("wallet_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("opening_cash_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expected_cash_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("actual_cash_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("variance_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("sale_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("void_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("return_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("generated_by", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"], name="fk_z_reports_location_id_locations"),
        sa.PrimaryKeyConstraint("id", name="pk_z_reports"),
        sa.UniqueConstraint("report_number", name="uq_z_reports_report_number"),
        sa.UniqueConstraint("location_id", "report_date", name="uq_z_reports_location_date"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("z_reports", schema=None) as batch_op:
        batch_op.create_index("ix_z_reports_location_id", ["location_id"], unique=False)
        batch_op.create_index("ix_z_reports_report_date", ["report_date"], unique=False)

    op.create_table(
        "online_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(64), nullable=False),
        sa.Column("source", sa.String(32), nullable=False, server_default="WEBSITE"),
        sa.Column("customer_name", sa.String(255), nullable=False),
        sa.Column("customer_phone", sa.String(32), nullable=False),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("customer_address", sa.Text(), nullable=True),
        sa.Column("customer_city", sa.String(128), nullable=True),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("processed_by", sa.Integer(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fulfilled_location_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["fulfilled_location_id"], ["locations.id"], name="fk_online_orders_fulfilled_location_id_locations"),
        sa.PrimaryKeyConstraint("id", name="pk_online_orders"),
        sa.UniqueConstraint("order_number", name="uq_online_orders_order_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_online_orders_status_created", "online_orders", ["status", "created_at"])

    op.create_table(
        "online_order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("variant_name", sa.String(255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["online_orders.id"], name="fk_online_order_items_order_id_online_orders"),
        sa.ForeignKeyConstraint(["variant_id"], ["product_variants.id"], name="fk_online_order_items_variant_id_product_variants"),
        sa.PrimaryKeyConstraint("id", name="pk_online_order_items"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_online_order_items_order_id", "online_order_items", ["order_id"])

    op.create_table(
        "outbox_messages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("channel", sa.String(16), nullable=False),
        sa.Column("topic", sa.String(64), nullable=False),
        sa.Column("room", sa.String(64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_outbox_messages"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_outbox_messages_status_created", "outbox_messages", ["status", "created_at"])


def downgrade():
    op.drop_index("ix_outbox_messages_status_created", table_name="outbox_messages")
    op.drop_table("outbox_messages")
    op.drop_index("ix_online_order_items_order_id", table_name="online_order_items")
    op.drop_table("online_order_items")
    op.drop_index("ix_online_orders_status_created", table_name="online_orders")
    op.drop_table("online_orders")
    op.drop_table("z_reports")
    op.drop_table("sale_payments")
    op.drop_index("ix_sale_items_sale_id", table_name="sale_items")
    op.drop_table("sale_items")
    op.drop_table("sales")
    op.drop_index("uq_shifts_actor_open", table_name="shifts")
    op.drop_table("shifts")
    op.drop_index("ix_document_sequences_location_id", table_name="document_sequences")
    op.drop_table("document_sequences")
    op.drop_table("stock_movements")
    op.drop_index("ix_stock_levels_location", table_name="stock_levels")
    op.drop_table("stock_levels")
    op.drop_table("customers")
    op.drop_index("ix_payment_methods_method_type", table_name="payment_methods")
    op.drop_table("payment_methods")
    op.drop_table("product_variants")
    op.drop_table("locations")
