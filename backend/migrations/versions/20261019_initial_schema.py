"""Initial franchise ops schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


NOW = sa.text("(CURRENT_TIMESTAMP)")


def upgrade():
    # --- tenancy -------------------------------------------------------------
    op.create_table(
        "franchises",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("franchises", schema=None) as batch_op:
        batch_op.create_index("ix_franchises_code", ["code"], unique=True)
        batch_op.create_index("ix_franchises_is_active", ["is_active"], unique=False)

    op.create_table(
        "franchise_locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("franchise_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("location_code", sa.String(32), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("shipping_zone", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["franchise_id"], ["franchises.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("franchise_id", "location_code", name="uq_locations_franchise_code"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("franchise_locations", schema=None) as batch_op:
        batch_op.create_index("ix_locations_franchise_id", ["franchise_id"], unique=False)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("franchise_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=True),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="franchisee"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["franchise_id"], ["franchises.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["franchise_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("franchise_id", "username", name="uq_users_franchise_username"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_franchise_id", ["franchise_id"], unique=False)
        batch_op.create_index("ix_users_location_id", ["location_id"], unique=False)
        batch_op.create_index("ix_users_franchise_role", ["franchise_id", "role"], unique=False)

    # --- catalog and pricing -------------------------------------------------
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(64), nullable=True),
        sa.Column("base_price_cents", sa.Integer(), nullable=False),
        sa.Column("cost_price_cents", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_active", ["is_active"], unique=False)

    op.create_table(
        "franchise_pricing",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("franchise_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("base_price_cents", sa.Integer(), nullable=True),
        sa.Column("franchise_discount_bps", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("effective_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["franchise_id"], ["franchises.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("franchise_pricing", schema=None) as batch_op:
        batch_op.create_index("ix_franchise_pricing_franchise_id", ["franchise_id"], unique=False)
        batch_op.create_index("ix_franchise_pricing_product_id", ["product_id"], unique=False)
        batch_op.create_index(
            "ix_franchise_pricing_lookup", ["franchise_id", "product_id", "effective_from"], unique=False
        )

    op.create_table(
        "volume_discount_tiers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("pricing_id", sa.Integer(), nullable=False),
        sa.Column("min_quantity", sa.Integer(), nullable=False),
        sa.Column("discount_bps", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["pricing_id"], ["franchise_pricing.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("pricing_id", "min_quantity", name="uq_volume_tiers_pricing_min"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("volume_discount_tiers", schema=None) as batch_op:
        batch_op.create_index("ix_volume_discount_tiers_pricing_id", ["pricing_id"], unique=False)

    op.create_table(
        "franchise_discounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("franchise_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("discount_type", sa.String(16), nullable=False, server_default="PERCENTAGE"),
        sa.Column("discount_value", sa.Integer(), nullable=False),
        sa.Column("minimum_order_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["franchise_id"], ["franchises.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("franchise_discounts", schema=None) as batch_op:
        batch_op.create_index("ix_franchise_discounts_franchise_id", ["franchise_id"], unique=False)
        batch_op.create_index("ix_franchise_discounts_active", ["franchise_id", "is_active"], unique=False)

    op.create_table(
        "tax_configurations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("tax_name", sa.String(64), nullable=False, server_default="VAT"),
        sa.Column("tax_type", sa.String(16), nullable=False, server_default="PERCENTAGE"),
        sa.Column("tax_rate", sa.Integer(), nullable=False),
        sa.Column("applies_to_shipping", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["location_id"], ["franchise_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("location_id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "shipping_configurations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("base_shipping_rate_cents", sa.Integer(), nullable=False),
        sa.Column("free_shipping_threshold_cents", sa.Integer(), nullable=False),
        sa.Column("express_shipping_rate_cents", sa.Integer(), nullable=True),
        sa.Column("shipping_zones", sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(["location_id"], ["franchise_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("location_id"),
        sqlite_autoincrement=True,
    )

    # --- orders --------------------------------------------------------------
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(64), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="draft"),
        sa.Column("approval_level", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("required_tiers", sa.JSON(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("shipping_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("grand_total_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default="PHP"),
        sa.Column("priority", sa.String(16), nullable=False, server_default="medium"),
        sa.Column("requested_delivery_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("shipping_info", sa.JSON(), nullable=True),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["location_id"], ["franchise_locations.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number", name="uq_orders_order_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_orders_created_by_user_id", ["created_by_user_id"], unique=False)
        batch_op.create_index("ix_orders_location_status", ["location_id", "status"], unique=False)
        batch_op.create_index("ix_orders_location_created", ["location_id", "created_at"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("base_price_cents", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_bps", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("line_total_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", "line_number", name="uq_order_items_order_line"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.create_index("ix_order_items_order_id", ["order_id"], unique=False)

    op.create_table(
        "order_approvals",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("approver_id", sa.Integer(), nullable=False),
        sa.Column("approver_name", sa.String(255), nullable=True),
        sa.Column("approver_role", sa.String(32), nullable=False),
        sa.Column("approval_level", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(16), nullable=False),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["approver_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", "approval_level", name="uq_order_approvals_order_level"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_approvals", schema=None) as batch_op:
        batch_op.create_index("ix_order_approvals_order_id", ["order_id"], unique=False)

    op.create_table(
        "approval_thresholds",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("auto_approve_limit_cents", sa.Integer(), nullable=False),
        sa.Column("level1_threshold_cents", sa.Integer(), nullable=False),
        sa.Column("level2_threshold_cents", sa.Integer(), nullable=False),
        sa.Column("level3_threshold_cents", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["location_id"], ["franchise_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("location_id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "shipments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("carrier", sa.String(64), nullable=False),
        sa.Column("tracking_number", sa.String(128), nullable=True),
        sa.Column("shipping_address", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="in_transit"),
        sa.Column("estimated_delivery", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_delivery", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivery_proof", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "fulfillment_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("priority", sa.String(16), nullable=False, server_default="medium"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["franchise_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "order_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("from_status", sa.String(32), nullable=True),
        sa.Column("to_status", sa.String(32), nullable=True),
        sa.Column("actor_type", sa.String(16), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_events", schema=None) as batch_op:
        batch_op.create_index("ix_order_events_order", ["order_id", "id"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("period", sa.String(16), nullable=False, server_default=""),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["location_id"], ["franchise_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "location_id", "document_type", "period", name="uq_doc_sequences_location_type_period"
        ),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("document_sequences", schema=None) as batch_op:
        batch_op.create_index("ix_document_sequences_location_id", ["location_id"], unique=False)

    # --- inventory -----------------------------------------------------------
    op.create_table(
        "inventory",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("current_stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reserved_stock", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reorder_level", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("max_stock", sa.Integer(), nullable=False, server_default=sa.text("1000")),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.CheckConstraint("reserved_stock >= 0", name="ck_inventory_reserved_nonneg"),
        sa.CheckConstraint("current_stock >= 0", name="ck_inventory_current_nonneg"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["franchise_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "location_id", name="uq_inventory_product_location"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_inventory_location", ["location_id"], unique=False)

    op.create_table(
        "inventory_reservations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("quantity_reserved", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["franchise_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_reservations", schema=None) as batch_op:
        batch_op.create_index("ix_reservations_order_status", ["order_id", "status"], unique=False)
        batch_op.create_index("ix_reservations_status_expires", ["status", "expires_at"], unique=False)

    op.create_table(
        "inventory_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(16), nullable=True),
        sa.Column("reference_id", sa.String(64), nullable=True),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(255), nullable=True),
        sa.Column("actor_type", sa.String(16), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["franchise_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_transactions_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_inventory_transactions_transaction_type", ["transaction_type"], unique=False)
        batch_op.create_index(
            "ix_invtx_location_product_created", ["location_id", "product_id", "created_at"], unique=False
        )
        batch_op.create_index("ix_invtx_reference", ["reference_type", "reference_id"], unique=False)

    # --- collaborators -------------------------------------------------------
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("franchise_id", sa.Integer(), nullable=True),
        sa.Column("target_type", sa.String(16), nullable=False),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("target_role", sa.String(32), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("level", sa.String(16), nullable=False, server_default="info"),
        sa.Column("category", sa.String(32), nullable=True),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False),
        sa.ForeignKeyConstraint(["franchise_id"], ["franchises.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("notifications", schema=None) as batch_op:
        batch_op.create_index("ix_notifications_franchise_id", ["franchise_id"], unique=False)
        batch_op.create_index("ix_notifications_target", ["target_type", "target_id"], unique=False)

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("invoice_number", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="ISSUED"),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("tax_cents", sa.Integer(), nullable=False),
        sa.Column("shipping_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finalized_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id"),
        sa.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        sqlite_autoincrement=True,
    )


def downgrade():
    for table in (
        "invoices",
        "notifications",
        "inventory_transactions",
        "inventory_reservations",
        "inventory",
        "document_sequences",
        "order_events",
        "fulfillment_orders",
        "shipments",
        "approval_thresholds",
        "order_approvals",
        "order_items",
        "orders",
        "shipping_configurations",
        "tax_configurations",
        "franchise_discounts",
        "volume_discount_tiers",
        "franchise_pricing",
        "products",
        "users",
        "franchise_locations",
        "franchises",
    ):
        op.drop_table(table)
