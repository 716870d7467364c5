"""
Test Configuration — Fixtures for async DB, test client, and mock data.

Uses per-test transactions with SAVEPOINT/rollback so each test gets a
clean database state while sharing the same session-level schema.
"""

import uuid
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from api.deps import get_current_user, get_db, get_tenant_db
from api.main import app
from db.session import Base

# Use in-memory SQLite for tests (no RLS, partial indexes still enforced).
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TENANT_ID = "00000000-0000-0000-0000-000000000001"
OTHER_TENANT_ID = "00000000-0000-0000-0000-000000000002"


@pytest.fixture(scope="session")
async def test_engine():
    """Create a test database engine and build all tables once."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """Create a test session wrapped in a transaction that rolls back after each test."""
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(bind=conn, expire_on_commit=False)

        # Use SAVEPOINT so nested commits inside app code don't end our transaction
        @event.listens_for(session.sync_session, "after_transaction_end")
        def restart_savepoint(db_session, transaction):
            if transaction.nested and not transaction._parent.nested:
                session.sync_session.begin_nested()

        await conn.begin_nested()  # SAVEPOINT

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    """Keep tests off the network: publishing is a no-op unless a test opts in."""
    published: list[tuple[str, str, dict]] = []

    async def _capture(tenant_id, event_type, payload=None):
        published.append((str(tenant_id), event_type, dict(payload or {})))
        return 0

    monkeypatch.setattr("api.v1.routers.purchase_orders.publish_event", _capture)
    monkeypatch.setattr("api.v1.routers.consolidation.publish_event", _capture)
    return published


@pytest.fixture
def mock_user():
    """Mock authenticated user."""
    return {
        "sub": "auth0|test-user-id",
        "email": "ops@siver.test",
        "tenant_id": TENANT_ID,
    }


@pytest.fixture
async def client(test_db, mock_user):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return mock_user

    async def override_get_tenant_db():
        """Skip set_config (SQLite doesn't support it), return session directly."""
        return test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_tenant_db] = override_get_tenant_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def make_order(tenant_id, commune_id=None, **overrides):
    from db.models import Order

    fields = {
        "tenant_id": tenant_id,
        "order_type": "b2c",
        "source_type": "b2c",
        "buyer_name": "Marie Joseph",
        "buyer_phone": "+509 3111 2222",
        "commune_id": commune_id,
        "status": "confirmed",
        "payment_status": "paid",
        "total_quantity": 2,
        "total_amount": 40.0,
    }
    fields.update(overrides)
    return Order(**fields)


@pytest.fixture
async def seeded_db(test_db):
    """Seed the test DB with one tenant's destinations, rate table, settings and orders."""
    from db.models import (
        CategoryShippingRate,
        Commune,
        ConsolidationSettings,
        Department,
        OrderItem,
        ShippingRateBracket,
        Tenant,
    )

    tenant_id = uuid.UUID(TENANT_ID)

    tenant = Tenant(tenant_id=tenant_id, name="Siver Test Market", email="ops@siver.test", plan="professional")
    test_db.add(tenant)
    await test_db.flush()

    department = Department(tenant_id=tenant_id, code="OU", name="Ouest")
    test_db.add(department)
    await test_db.flush()

    commune = Commune(
        tenant_id=tenant_id,
        department_id=department.department_id,
        code="PAP",
        name="Port-au-Prince",
        local_delivery_fee=5.0,
        operational_fee=2.0,
        insurance_rate_percent=5.0,
    )
    test_db.add(commune)
    await test_db.flush()

    for min_kg, max_kg, per_kg, per_lb in [(0.0, 1.0, 4.0, 2.5), (1.0, 5.0, 3.0, 2.0), (5.0, 10.0, 2.5, 1.8)]:
        test_db.add(
            ShippingRateBracket(
                tenant_id=tenant_id,
                min_weight_kg=min_kg,
                max_weight_kg=max_kg,
                china_usa_cost_per_kg=per_kg,
                usa_dest_cost_per_lb=per_lb,
            )
        )
    test_db.add(CategoryShippingRate(tenant_id=tenant_id, category_id="electronics", fixed_fee=2.0, percentage_fee=1.0))

    settings_row = ConsolidationSettings(
        tenant_id=tenant_id,
        mode="hybrid",
        time_interval_hours=48,
        order_quantity_threshold=10,
        notify_threshold_percent=80,
        is_active=True,
    )
    test_db.add(settings_row)

    base_time = datetime.utcnow() - timedelta(hours=3)
    paid_orders = []
    for i, buyer in enumerate(["Marie Joseph", "Jean Pierre", "Nadège Louis"]):
        order = make_order(
            tenant_id,
            commune.commune_id,
            buyer_name=buyer,
            total_quantity=i + 1,
            total_amount=20.0 * (i + 1),
            created_at=base_time + timedelta(minutes=i),
        )
        test_db.add(order)
        paid_orders.append(order)
    unpaid = make_order(tenant_id, commune.commune_id, payment_status="pending", buyer_name="Unpaid Buyer")
    cancelled = make_order(tenant_id, commune.commune_id, status="cancelled", buyer_name="Cancelled Buyer")
    test_db.add_all([unpaid, cancelled])
    await test_db.flush()

    test_db.add_all(
        [
            OrderItem(
                tenant_id=tenant_id,
                order_id=paid_orders[0].order_id,
                sku="TSHIRT-001",
                product_name="Cotton T-Shirt",
                category_id="apparel",
                color="Black",
                size="M",
                quantity=1,
                unit_price=6.5,
                weight_grams=180.0,
            ),
            OrderItem(
                tenant_id=tenant_id,
                order_id=paid_orders[1].order_id,
                sku="TSHIRT-001",
                product_name="Cotton T-Shirt",
                category_id="apparel",
                color="Black",
                size="M",
                quantity=2,
                unit_price=6.5,
                weight_grams=180.0,
            ),
            OrderItem(
                tenant_id=tenant_id,
                order_id=paid_orders[1].order_id,
                sku="EARBUDS-7",
                product_name="Wireless Earbuds",
                category_id="electronics",
                quantity=1,
                unit_price=18.0,
                weight_grams=120.0,
            ),
        ]
    )
    await test_db.flush()

    await test_db.commit()

    return {
        "tenant_id": tenant_id,
        "department": department,
        "commune": commune,
        "settings": settings_row,
        "paid_orders": paid_orders,
        "unpaid_order": unpaid,
        "cancelled_order": cancelled,
    }
