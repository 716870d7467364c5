"""
Siver Logistics Database Models

11 tables for shipping quotes and purchase-order consolidation.
Multi-tenant via tenant_id on all tables.

Tables:
  Tenancy (1):
  1. tenants                    - Marketplace operators (one per storefront)

  Shipping (4):
  2. departments                - Destination regions
  3. communes                   - Destination localities (+ local fees, insurance)
  4. shipping_rate_brackets     - Weight brackets for China→USA and USA→hub legs
  5. category_shipping_rates    - Per-category surcharges (oversize, fragile)

  Orders (2):
  6. orders                     - B2C / B2B orders awaiting consolidation
  7. order_items                - Order lines (feeds the picking manifest)

  Consolidation (4):
  8. purchase_orders            - Consolidated shipment cycles
  9. order_po_links             - Order ↔ PO join (+ hybrid tracking id)
  10. consolidation_settings    - Per-tenant auto-close rules
  11. po_status_events          - Audit trail of PO status changes
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    text,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base

OPEN_PO_STATUSES_SQL = "status IN ('draft', 'open')"

# ─── 1. Tenants ────────────────────────────────────────────────────────────


class Tenant(Base):
    __tablename__ = "tenants"

    tenant_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    plan = Column(String(50), nullable=False, default="starter")
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("plan IN ('starter', 'professional', 'enterprise')", name="ck_tenant_plan"),
        CheckConstraint("status IN ('active', 'inactive', 'trial', 'churned')", name="ck_tenant_status"),
    )


# ─── 2. Departments ────────────────────────────────────────────────────────


class Department(Base):
    __tablename__ = "departments"

    department_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    code = Column(String(10), nullable=False)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_department_code_per_tenant"),
        Index("ix_departments_tenant", "tenant_id"),
    )

    communes = relationship("Commune", back_populates="department")


# ─── 3. Communes ───────────────────────────────────────────────────────────


class Commune(Base):
    __tablename__ = "communes"

    commune_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    department_id = Column(GUID(), ForeignKey("departments.department_id"), nullable=False)
    code = Column(String(10), nullable=False)
    name = Column(String(100), nullable=False)
    local_delivery_fee = Column(Float, nullable=False, default=0.0)
    operational_fee = Column(Float, nullable=False, default=0.0)
    insurance_rate_percent = Column(Float, nullable=False, default=0.0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("department_id", "code", name="uq_commune_code_per_department"),
        Index("ix_communes_tenant", "tenant_id"),
        CheckConstraint("local_delivery_fee >= 0", name="ck_commune_delivery_fee_positive"),
        CheckConstraint("operational_fee >= 0", name="ck_commune_operational_fee_positive"),
        CheckConstraint(
            "insurance_rate_percent >= 0 AND insurance_rate_percent <= 100", name="ck_commune_insurance_range"
        ),
    )

    department = relationship("Department", back_populates="communes")


# ─── 4. Shipping Rate Brackets ─────────────────────────────────────────────


class ShippingRateBracket(Base):
    """One weight bracket of a tenant's shipping rate table.

    China→USA is billed per kg, USA→destination hub per lb.
    """

    __tablename__ = "shipping_rate_brackets"

    bracket_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    min_weight_kg = Column(Float, nullable=False)
    max_weight_kg = Column(Float, nullable=False)
    china_usa_cost_per_kg = Column(Float, nullable=False)
    usa_dest_cost_per_lb = Column(Float, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_rate_brackets_tenant_min", "tenant_id", "min_weight_kg"),
        CheckConstraint("min_weight_kg >= 0", name="ck_bracket_min_positive"),
        CheckConstraint("max_weight_kg >= min_weight_kg", name="ck_bracket_range_valid"),
        CheckConstraint("china_usa_cost_per_kg >= 0", name="ck_bracket_china_rate_positive"),
        CheckConstraint("usa_dest_cost_per_lb >= 0", name="ck_bracket_dest_rate_positive"),
    )


# ─── 5. Category Shipping Rates ────────────────────────────────────────────


class CategoryShippingRate(Base):
    __tablename__ = "category_shipping_rates"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    category_id = Column(String(100), nullable=False)  # Storefront category key
    fixed_fee = Column(Float, nullable=False, default=0.0)
    percentage_fee = Column(Float, nullable=False, default=0.0)  # 5.0 = 5% of reference price
    description = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "category_id", name="uq_category_rate_per_tenant"),
        CheckConstraint("fixed_fee >= 0", name="ck_category_fixed_fee_positive"),
        CheckConstraint("percentage_fee >= 0", name="ck_category_percentage_fee_positive"),
    )


# ─── 6. Orders ─────────────────────────────────────────────────────────────


class Order(Base):
    """Customer order (retail or wholesale) waiting to ride a PO cycle."""

    __tablename__ = "orders"

    order_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    order_type = Column(String(10), nullable=False)  # b2c, b2b
    source_type = Column(String(20), nullable=False)  # b2c, b2b, siver_match
    buyer_user_id = Column(String(100))
    buyer_name = Column(String(255))
    buyer_phone = Column(String(50))
    commune_id = Column(GUID(), ForeignKey("communes.commune_id"), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    payment_status = Column(String(20), nullable=False, default="pending")
    total_quantity = Column(Integer, nullable=False, default=0)
    total_amount = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_orders_tenant_payment", "tenant_id", "payment_status", "status"),
        CheckConstraint("order_type IN ('b2c', 'b2b')", name="ck_order_type"),
        CheckConstraint("source_type IN ('b2c', 'b2b', 'siver_match')", name="ck_order_source_type"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'processing', 'shipped', 'delivered', 'cancelled', 'refunded')",
            name="ck_order_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed', 'refunded')", name="ck_order_payment_status"
        ),
        CheckConstraint("total_quantity >= 0", name="ck_order_quantity_positive"),
        CheckConstraint("total_amount >= 0", name="ck_order_amount_positive"),
    )

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    commune = relationship("Commune")


# ─── 7. Order Items ────────────────────────────────────────────────────────


class OrderItem(Base):
    __tablename__ = "order_items"

    item_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    order_id = Column(GUID(), ForeignKey("orders.order_id"), nullable=False)
    sku = Column(String(100), nullable=False)
    product_name = Column(String(255), nullable=False)
    category_id = Column(String(100))
    color = Column(String(50))
    size = Column(String(50))
    image_url = Column(Text)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Float, nullable=False, default=0.0)
    weight_grams = Column(Float)

    __table_args__ = (
        Index("ix_order_items_order", "order_id"),
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
    )

    order = relationship("Order", back_populates="items")


# ─── 8. Purchase Orders ────────────────────────────────────────────────────


class PurchaseOrder(Base):
    """A consolidation cycle: many customer orders shipped as one batch.

    At most one PO per tenant may be in draft/open; the partial unique index
    below is the storage-level guard, the engine checks first for a clean error.
    """

    __tablename__ = "purchase_orders"

    po_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    po_number = Column(String(40), nullable=False)
    status = Column(String(20), nullable=False, default="open")
    cycle_start_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    cycle_end_at = Column(DateTime)
    closed_at = Column(DateTime)
    close_reason = Column(String(30))  # time_threshold, quantity_threshold, manual
    orders_at_close = Column(Integer)

    # Logistics
    china_tracking_number = Column(String(100))
    china_tracking_entered_at = Column(DateTime)
    ordered_at = Column(DateTime)
    shipped_from_china_at = Column(DateTime)
    arrived_usa_at = Column(DateTime)
    arrived_hub_at = Column(DateTime)
    processing_at = Column(DateTime)
    completed_at = Column(DateTime)

    total_orders = Column(Integer, nullable=False, default=0)
    total_quantity = Column(Integer, nullable=False, default=0)
    total_amount = Column(Float, nullable=False, default=0.0)

    created_by = Column(String(100))
    notes = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "po_number", name="uq_po_number_per_tenant"),
        Index("ix_po_tenant_status", "tenant_id", "status"),
        Index(
            "uq_po_single_open_per_tenant",
            "tenant_id",
            unique=True,
            postgresql_where=text(OPEN_PO_STATUSES_SQL),
            sqlite_where=text(OPEN_PO_STATUSES_SQL),
        ),
        CheckConstraint("total_orders >= 0", name="ck_po_total_orders_positive"),
        CheckConstraint("total_quantity >= 0", name="ck_po_total_quantity_positive"),
        CheckConstraint(
            "status IN ('draft', 'open', 'closed', 'ordered', 'in_transit_china', "
            "'in_transit_usa', 'arrived_hub', 'processing', 'completed')",
            name="ck_po_status",
        ),
    )

    links = relationship("OrderPOLink", back_populates="purchase_order", cascade="all, delete-orphan")
    events = relationship("POStatusEvent", back_populates="purchase_order", cascade="all, delete-orphan")


# ─── 9. Order ↔ PO Links ───────────────────────────────────────────────────


class OrderPOLink(Base):
    """Joins one order to the PO that ships it. Unique per order."""

    __tablename__ = "order_po_links"

    link_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    po_id = Column(GUID(), ForeignKey("purchase_orders.po_id"), nullable=False)
    order_id = Column(GUID(), ForeignKey("orders.order_id"), nullable=False)
    source_type = Column(String(20), nullable=False)  # b2c, b2b, siver_match
    buyer_name = Column(String(255))
    buyer_phone = Column(String(50))
    department_code = Column(String(10))
    commune_code = Column(String(10))
    short_order_id = Column(String(12), nullable=False)
    hybrid_tracking_id = Column(String(200))  # Set once China tracking is entered
    unit_count = Column(Integer, nullable=False, default=0)
    previous_status = Column(String(20))
    current_status = Column(String(20))
    status_synced_at = Column(DateTime)
    pickup_qr_code = Column(String(100))
    pickup_qr_generated_at = Column(DateTime)
    delivery_confirmed_at = Column(DateTime)
    delivery_confirmed_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("order_id", name="uq_order_po_link_order"),
        UniqueConstraint("pickup_qr_code", name="uq_po_link_pickup_qr"),
        Index("ix_po_links_po", "po_id"),
        CheckConstraint("source_type IN ('b2c', 'b2b', 'siver_match')", name="ck_po_link_source_type"),
        CheckConstraint("unit_count >= 0", name="ck_po_link_unit_count_positive"),
    )

    purchase_order = relationship("PurchaseOrder", back_populates="links")
    order = relationship("Order")


# ─── 10. Consolidation Settings ────────────────────────────────────────────


class ConsolidationSettings(Base):
    """Per-tenant auto-close rules. Created once, updated in place."""

    __tablename__ = "consolidation_settings"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False, unique=True)
    mode = Column(String(10), nullable=False, default="hybrid")
    time_interval_hours = Column(Integer, nullable=False, default=48)
    order_quantity_threshold = Column(Integer, nullable=False, default=50)
    notify_threshold_percent = Column(Integer, nullable=False, default=80)
    is_active = Column(Boolean, nullable=False, default=True)
    last_auto_close_at = Column(DateTime)
    next_scheduled_close_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("mode IN ('time', 'quantity', 'hybrid')", name="ck_consolidation_mode"),
        CheckConstraint("time_interval_hours > 0", name="ck_consolidation_hours_positive"),
        CheckConstraint("order_quantity_threshold > 0", name="ck_consolidation_threshold_positive"),
        CheckConstraint(
            "notify_threshold_percent > 0 AND notify_threshold_percent <= 100",
            name="ck_consolidation_notify_range",
        ),
    )


# ─── 11. PO Status Events ──────────────────────────────────────────────────


class POStatusEvent(Base):
    __tablename__ = "po_status_events"

    event_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), ForeignKey("tenants.tenant_id"), nullable=False)
    po_id = Column(GUID(), ForeignKey("purchase_orders.po_id"), nullable=False)
    from_status = Column(String(20))
    to_status = Column(String(20), nullable=False)
    reason = Column(String(30))
    actor = Column(String(100))
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_po_events_po_time", "po_id", "created_at"),)

    purchase_order = relationship("PurchaseOrder", back_populates="events")
