"""
Seed Logistics Data — demo tenant with destinations, rate table and paid orders.

Run: python scripts/seed_logistics_data.py
"""

import asyncio
import random
import uuid
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_settings
from db.models import (
    CategoryShippingRate,
    Commune,
    ConsolidationSettings,
    Department,
    Order,
    OrderItem,
    ShippingRateBracket,
    Tenant,
)

settings = get_settings()

DEPARTMENTS = {
    "OU": ("Ouest", [("PAP", "Port-au-Prince", 5.0, 2.0), ("PV", "Pétion-Ville", 6.0, 2.0)]),
    "ND": ("Nord", [("CH", "Cap-Haïtien", 8.0, 2.5)]),
    "SD": ("Sud", [("LC", "Les Cayes", 9.0, 2.5)]),
    "AR": ("Artibonite", [("GO", "Gonaïves", 7.5, 2.5)]),
}

# (min_kg, max_kg, china_usa_per_kg, usa_dest_per_lb)
BRACKETS = [
    (0.0, 1.0, 3.5, 2.2),
    (1.0, 5.0, 3.0, 2.0),
    (5.0, 10.0, 2.7, 1.8),
    (10.0, 30.0, 2.4, 1.6),
]

CATEGORY_RATES = [
    ("electronics", 2.0, 1.5, "Fragile handling"),
    ("furniture", 10.0, 0.0, "Oversize handling"),
]

PRODUCTS = [
    ("TSHIRT-001", "Cotton T-Shirt", "apparel", 180.0, 6.5),
    ("SNEAK-014", "Running Sneakers", "footwear", 900.0, 32.0),
    ("PHONE-CASE-3", "Phone Case", "electronics", 60.0, 4.0),
    ("EARBUDS-7", "Wireless Earbuds", "electronics", 120.0, 18.0),
    ("BAG-220", "Canvas Backpack", "accessories", 650.0, 21.0),
]
COLORS = ["Black", "White", "Red", "Blue"]
SIZES = ["S", "M", "L", "XL"]
BUYERS = ["Marie Joseph", "Jean Pierre", "Nadège Louis", "Wilson Charles", "Rose-Marie Étienne"]


async def seed_data():
    """Create demo data for development."""
    engine = create_async_engine(settings.database_url)
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with SessionLocal() as db:
        # ── Tenant ───────────────────────────────────────────
        tenant = Tenant(
            tenant_id=uuid.UUID("00000000-0000-0000-0000-000000000001"),
            name="Siver Market",
            email="ops@siver.local",
            plan="professional",
        )
        db.add(tenant)
        await db.flush()

        # ── Destinations ─────────────────────────────────────
        communes = []
        for dept_code, (dept_name, commune_rows) in DEPARTMENTS.items():
            dept = Department(tenant_id=tenant.tenant_id, code=dept_code, name=dept_name)
            db.add(dept)
            await db.flush()
            for code, name, delivery_fee, operational_fee in commune_rows:
                commune = Commune(
                    tenant_id=tenant.tenant_id,
                    department_id=dept.department_id,
                    code=code,
                    name=name,
                    local_delivery_fee=delivery_fee,
                    operational_fee=operational_fee,
                    insurance_rate_percent=3.0,
                )
                db.add(commune)
                communes.append(commune)
        await db.flush()

        # ── Rate table ───────────────────────────────────────
        for min_kg, max_kg, per_kg, per_lb in BRACKETS:
            db.add(
                ShippingRateBracket(
                    tenant_id=tenant.tenant_id,
                    min_weight_kg=min_kg,
                    max_weight_kg=max_kg,
                    china_usa_cost_per_kg=per_kg,
                    usa_dest_cost_per_lb=per_lb,
                )
            )
        for category_id, fixed_fee, percentage_fee, description in CATEGORY_RATES:
            db.add(
                CategoryShippingRate(
                    tenant_id=tenant.tenant_id,
                    category_id=category_id,
                    fixed_fee=fixed_fee,
                    percentage_fee=percentage_fee,
                    description=description,
                )
            )

        db.add(ConsolidationSettings(tenant_id=tenant.tenant_id, mode="hybrid", time_interval_hours=48))

        # ── Orders ───────────────────────────────────────────
        now = datetime.utcnow()
        order_count = 0
        for i in range(24):
            lines = random.sample(PRODUCTS, k=random.randint(1, 3))
            order = Order(
                tenant_id=tenant.tenant_id,
                order_type=random.choice(["b2c", "b2c", "b2b"]),
                source_type=random.choice(["b2c", "b2b", "siver_match"]),
                buyer_name=random.choice(BUYERS),
                buyer_phone=f"+509 3{random.randint(1000000, 9999999)}",
                commune_id=random.choice(communes).commune_id,
                status="confirmed",
                payment_status="paid" if i % 5 else "pending",
                created_at=now - timedelta(hours=random.randint(1, 40)),
            )
            db.add(order)
            await db.flush()

            total_qty = 0
            total_amount = 0.0
            for sku, name, category_id, weight_grams, price in lines:
                qty = random.randint(1, 3)
                db.add(
                    OrderItem(
                        tenant_id=tenant.tenant_id,
                        order_id=order.order_id,
                        sku=sku,
                        product_name=name,
                        category_id=category_id,
                        color=random.choice(COLORS),
                        size=random.choice(SIZES),
                        quantity=qty,
                        unit_price=price,
                        weight_grams=weight_grams,
                    )
                )
                total_qty += qty
                total_amount += qty * price
            order.total_quantity = total_qty
            order.total_amount = round(total_amount, 2)
            order_count += 1

        await db.commit()
        print(f"✅ Seeded: 1 tenant, {len(communes)} communes, {len(BRACKETS)} rate brackets, {order_count} orders")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_data())
