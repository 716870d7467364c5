"""
Initial schema - all 11 tables

Revision ID: 001
Revises: None
Create Date: 2026-10-12
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Tenants
    op.create_table(
        "tenants",
        sa.Column("tenant_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("plan", sa.String(50), nullable=False, server_default="starter"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("plan IN ('starter', 'professional', 'enterprise')", name="ck_tenant_plan"),
        sa.CheckConstraint("status IN ('active', 'inactive', 'trial', 'churned')", name="ck_tenant_status"),
    )

    # 2. Departments
    op.create_table(
        "departments",
        sa.Column("department_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("code", sa.String(10), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "code", name="uq_department_code_per_tenant"),
    )
    op.create_index("ix_departments_tenant", "departments", ["tenant_id"])

    # 3. Communes
    op.create_table(
        "communes",
        sa.Column("commune_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("department_id", UUID(as_uuid=True), sa.ForeignKey("departments.department_id"), nullable=False),
        sa.Column("code", sa.String(10), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("local_delivery_fee", sa.Float, nullable=False, server_default="0"),
        sa.Column("operational_fee", sa.Float, nullable=False, server_default="0"),
        sa.Column("insurance_rate_percent", sa.Float, nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("department_id", "code", name="uq_commune_code_per_department"),
        sa.CheckConstraint("local_delivery_fee >= 0", name="ck_commune_delivery_fee_positive"),
        sa.CheckConstraint("operational_fee >= 0", name="ck_commune_operational_fee_positive"),
        sa.CheckConstraint(
            "insurance_rate_percent >= 0 AND insurance_rate_percent <= 100", name="ck_commune_insurance_range"
        ),
    )
    op.create_index("ix_communes_tenant", "communes", ["tenant_id"])

    # 4. Shipping Rate Brackets
    op.create_table(
        "shipping_rate_brackets",
        sa.Column("bracket_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("min_weight_kg", sa.Float, nullable=False),
        sa.Column("max_weight_kg", sa.Float, nullable=False),
        sa.Column("china_usa_cost_per_kg", sa.Float, nullable=False),
        sa.Column("usa_dest_cost_per_lb", sa.Float, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("min_weight_kg >= 0", name="ck_bracket_min_positive"),
        sa.CheckConstraint("max_weight_kg >= min_weight_kg", name="ck_bracket_range_valid"),
        sa.CheckConstraint("china_usa_cost_per_kg >= 0", name="ck_bracket_china_rate_positive"),
        sa.CheckConstraint("usa_dest_cost_per_lb >= 0", name="ck_bracket_dest_rate_positive"),
    )
    op.create_index("ix_rate_brackets_tenant_min", "shipping_rate_brackets", ["tenant_id", "min_weight_kg"])

    # 5. Category Shipping Rates
    op.create_table(
        "category_shipping_rates",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("category_id", sa.String(100), nullable=False),
        sa.Column("fixed_fee", sa.Float, nullable=False, server_default="0"),
        sa.Column("percentage_fee", sa.Float, nullable=False, server_default="0"),
        sa.Column("description", sa.Text),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "category_id", name="uq_category_rate_per_tenant"),
        sa.CheckConstraint("fixed_fee >= 0", name="ck_category_fixed_fee_positive"),
        sa.CheckConstraint("percentage_fee >= 0", name="ck_category_percentage_fee_positive"),
    )

    # 6. Orders
    op.create_table(
        "orders",
        sa.Column("order_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("order_type", sa.String(10), nullable=False),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("buyer_user_id", sa.String(100)),
        sa.Column("buyer_name", sa.String(255)),
        sa.Column("buyer_phone", sa.String(50)),
        sa.Column("commune_id", UUID(as_uuid=True), sa.ForeignKey("communes.commune_id"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("total_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Float, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("order_type IN ('b2c', 'b2b')", name="ck_order_type"),
        sa.CheckConstraint("source_type IN ('b2c', 'b2b', 'siver_match')", name="ck_order_source_type"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'processing', 'shipped', 'delivered', 'cancelled', 'refunded')",
            name="ck_order_status",
        ),
        sa.CheckConstraint("payment_status IN ('pending', 'paid', 'failed', 'refunded')", name="ck_order_payment_status"),
        sa.CheckConstraint("total_quantity >= 0", name="ck_order_quantity_positive"),
        sa.CheckConstraint("total_amount >= 0", name="ck_order_amount_positive"),
    )
    op.create_index("ix_orders_tenant_payment", "orders", ["tenant_id", "payment_status", "status"])

    # 7. Order Items
    op.create_table(
        "order_items",
        sa.Column("item_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("order_id", UUID(as_uuid=True), sa.ForeignKey("orders.order_id"), nullable=False),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("category_id", sa.String(100)),
        sa.Column("color", sa.String(50)),
        sa.Column("size", sa.String(50)),
        sa.Column("image_url", sa.Text),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Float, nullable=False, server_default="0"),
        sa.Column("weight_grams", sa.Float),
        sa.CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
    )
    op.create_index("ix_order_items_order", "order_items", ["order_id"])

    # 8. Purchase Orders
    op.create_table(
        "purchase_orders",
        sa.Column("po_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("po_number", sa.String(40), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("cycle_start_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("cycle_end_at", sa.DateTime),
        sa.Column("closed_at", sa.DateTime),
        sa.Column("close_reason", sa.String(30)),
        sa.Column("orders_at_close", sa.Integer),
        sa.Column("china_tracking_number", sa.String(100)),
        sa.Column("china_tracking_entered_at", sa.DateTime),
        sa.Column("ordered_at", sa.DateTime),
        sa.Column("shipped_from_china_at", sa.DateTime),
        sa.Column("arrived_usa_at", sa.DateTime),
        sa.Column("arrived_hub_at", sa.DateTime),
        sa.Column("processing_at", sa.DateTime),
        sa.Column("completed_at", sa.DateTime),
        sa.Column("total_orders", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Float, nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(100)),
        sa.Column("notes", sa.Text),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "po_number", name="uq_po_number_per_tenant"),
        sa.CheckConstraint("total_orders >= 0", name="ck_po_total_orders_positive"),
        sa.CheckConstraint("total_quantity >= 0", name="ck_po_total_quantity_positive"),
        sa.CheckConstraint(
            "status IN ('draft', 'open', 'closed', 'ordered', 'in_transit_china', "
            "'in_transit_usa', 'arrived_hub', 'processing', 'completed')",
            name="ck_po_status",
        ),
    )
    op.create_index("ix_po_tenant_status", "purchase_orders", ["tenant_id", "status"])
    # At most one accepting PO per tenant
    op.create_index(
        "uq_po_single_open_per_tenant",
        "purchase_orders",
        ["tenant_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('draft', 'open')"),
    )

    # 9. Order ↔ PO Links
    op.create_table(
        "order_po_links",
        sa.Column("link_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("po_id", UUID(as_uuid=True), sa.ForeignKey("purchase_orders.po_id"), nullable=False),
        sa.Column("order_id", UUID(as_uuid=True), sa.ForeignKey("orders.order_id"), nullable=False),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("buyer_name", sa.String(255)),
        sa.Column("buyer_phone", sa.String(50)),
        sa.Column("department_code", sa.String(10)),
        sa.Column("commune_code", sa.String(10)),
        sa.Column("short_order_id", sa.String(12), nullable=False),
        sa.Column("hybrid_tracking_id", sa.String(200)),
        sa.Column("unit_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("previous_status", sa.String(20)),
        sa.Column("current_status", sa.String(20)),
        sa.Column("status_synced_at", sa.DateTime),
        sa.Column("pickup_qr_code", sa.String(100)),
        sa.Column("pickup_qr_generated_at", sa.DateTime),
        sa.Column("delivery_confirmed_at", sa.DateTime),
        sa.Column("delivery_confirmed_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("order_id", name="uq_order_po_link_order"),
        sa.UniqueConstraint("pickup_qr_code", name="uq_po_link_pickup_qr"),
        sa.CheckConstraint("source_type IN ('b2c', 'b2b', 'siver_match')", name="ck_po_link_source_type"),
        sa.CheckConstraint("unit_count >= 0", name="ck_po_link_unit_count_positive"),
    )
    op.create_index("ix_po_links_po", "order_po_links", ["po_id"])

    # 10. Consolidation Settings
    op.create_table(
        "consolidation_settings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False, unique=True),
        sa.Column("mode", sa.String(10), nullable=False, server_default="hybrid"),
        sa.Column("time_interval_hours", sa.Integer, nullable=False, server_default="48"),
        sa.Column("order_quantity_threshold", sa.Integer, nullable=False, server_default="50"),
        sa.Column("notify_threshold_percent", sa.Integer, nullable=False, server_default="80"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("last_auto_close_at", sa.DateTime),
        sa.Column("next_scheduled_close_at", sa.DateTime),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("mode IN ('time', 'quantity', 'hybrid')", name="ck_consolidation_mode"),
        sa.CheckConstraint("time_interval_hours > 0", name="ck_consolidation_hours_positive"),
        sa.CheckConstraint("order_quantity_threshold > 0", name="ck_consolidation_threshold_positive"),
        sa.CheckConstraint(
            "notify_threshold_percent > 0 AND notify_threshold_percent <= 100",
            name="ck_consolidation_notify_range",
        ),
    )

    # 11. PO Status Events
    op.create_table(
        "po_status_events",
        sa.Column("event_id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.tenant_id"), nullable=False),
        sa.Column("po_id", UUID(as_uuid=True), sa.ForeignKey("purchase_orders.po_id"), nullable=False),
        sa.Column("from_status", sa.String(20)),
        sa.Column("to_status", sa.String(20), nullable=False),
        sa.Column("reason", sa.String(30)),
        sa.Column("actor", sa.String(100)),
        sa.Column("details", JSONB, server_default="{}"),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_po_events_po_time", "po_status_events", ["po_id", "created_at"])


def downgrade() -> None:
    op.drop_table("po_status_events")
    op.drop_table("consolidation_settings")
    op.drop_table("order_po_links")
    op.drop_table("purchase_orders")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("category_shipping_rates")
    op.drop_table("shipping_rate_brackets")
    op.drop_table("communes")
    op.drop_table("departments")
    op.drop_table("tenants")
