"""Row-level security on tenant-scoped tables

Every table with a tenant_id column gets a tenant_isolation policy keyed on
the app.current_tenant_id setting (set per request by api.deps.get_tenant_db).
FORCE keeps the table owner under the policy too. Celery workers run
across tenants and must connect with a BYPASSRLS role.

Revision ID: 002
Revises: 001
Create Date: 2026-10-12
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

TENANT_TABLES = [
    "departments",
    "communes",
    "shipping_rate_brackets",
    "category_shipping_rates",
    "orders",
    "order_items",
    "purchase_orders",
    "order_po_links",
    "consolidation_settings",
    "po_status_events",
]


def upgrade() -> None:
    for table in TENANT_TABLES:
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY")
        op.execute(
            f"CREATE POLICY tenant_isolation ON {table} "
            f"USING (tenant_id::text = current_setting('app.current_tenant_id', true))"
        )


def downgrade() -> None:
    for table in TENANT_TABLES:
        op.execute(f"DROP POLICY IF EXISTS tenant_isolation ON {table}")
        op.execute(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
