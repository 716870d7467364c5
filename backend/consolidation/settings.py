"""
Per-tenant consolidation settings: created on first access, updated in place.
"""

import uuid
from datetime import datetime, timedelta

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import InvalidInputError
from db.models import ConsolidationSettings

logger = structlog.get_logger()

CONSOLIDATION_MODES = ("time", "quantity", "hybrid")


async def get_consolidation_settings(db: AsyncSession, tenant_id: uuid.UUID) -> ConsolidationSettings:
    """Return the tenant's settings row, inserting defaults if none exists yet."""
    result = await db.execute(
        select(ConsolidationSettings).where(ConsolidationSettings.tenant_id == tenant_id).limit(1)
    )
    row = result.scalar_one_or_none()
    if row is not None:
        return row

    defaults = get_settings()
    row = ConsolidationSettings(
        tenant_id=tenant_id,
        mode=defaults.consolidation_default_mode,
        time_interval_hours=defaults.consolidation_default_time_hours,
        order_quantity_threshold=defaults.consolidation_default_quantity_threshold,
        notify_threshold_percent=defaults.consolidation_default_notify_percent,
        is_active=True,
    )
    db.add(row)
    await db.flush()
    logger.info("consolidation.settings_created", tenant_id=str(tenant_id), mode=row.mode)
    return row


async def update_consolidation_settings(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    *,
    mode: str | None = None,
    time_interval_hours: int | None = None,
    order_quantity_threshold: int | None = None,
    notify_threshold_percent: int | None = None,
    is_active: bool | None = None,
    open_cycle_start: datetime | None = None,
) -> ConsolidationSettings:
    """
    Update only the fields provided. Validation runs before any mutation.

    open_cycle_start lets the caller refresh next_scheduled_close_at for the
    currently open PO when the time window changes.
    """
    if mode is not None and mode not in CONSOLIDATION_MODES:
        raise InvalidInputError(f"mode must be one of {', '.join(CONSOLIDATION_MODES)}")
    if time_interval_hours is not None and time_interval_hours <= 0:
        raise InvalidInputError("time_interval_hours must be > 0")
    if order_quantity_threshold is not None and order_quantity_threshold <= 0:
        raise InvalidInputError("order_quantity_threshold must be > 0")
    if notify_threshold_percent is not None and not 0 < notify_threshold_percent <= 100:
        raise InvalidInputError("notify_threshold_percent must be in (0, 100]")

    row = await get_consolidation_settings(db, tenant_id)
    if mode is not None:
        row.mode = mode
    if time_interval_hours is not None:
        row.time_interval_hours = time_interval_hours
    if order_quantity_threshold is not None:
        row.order_quantity_threshold = order_quantity_threshold
    if notify_threshold_percent is not None:
        row.notify_threshold_percent = notify_threshold_percent
    if is_active is not None:
        row.is_active = is_active
    row.updated_at = datetime.utcnow()

    if open_cycle_start is not None:
        row.next_scheduled_close_at = scheduled_close_at(row, open_cycle_start)

    await db.flush()
    logger.info(
        "consolidation.settings_updated",
        tenant_id=str(tenant_id),
        mode=row.mode,
        time_interval_hours=row.time_interval_hours,
        order_quantity_threshold=row.order_quantity_threshold,
        is_active=row.is_active,
    )
    return row


def scheduled_close_at(settings_row: ConsolidationSettings, cycle_start_at: datetime) -> datetime | None:
    """When the time rule will fire for a cycle, or None in pure quantity mode."""
    if settings_row.mode == "quantity":
        return None
    return cycle_start_at + timedelta(hours=settings_row.time_interval_hours)


def settings_to_dict(settings_row: ConsolidationSettings) -> dict:
    return {
        "mode": settings_row.mode,
        "time_interval_hours": settings_row.time_interval_hours,
        "order_quantity_threshold": settings_row.order_quantity_threshold,
        "notify_threshold_percent": settings_row.notify_threshold_percent,
        "is_active": settings_row.is_active,
        "last_auto_close_at": settings_row.last_auto_close_at,
        "next_scheduled_close_at": settings_row.next_scheduled_close_at,
    }
