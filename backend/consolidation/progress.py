"""
Cycle progress and urgency for the consolidation dashboard.

Urgency is a display classification only; it never drives a close.
"""

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from consolidation.engine import get_open_po, po_to_dict
from consolidation.settings import get_consolidation_settings, settings_to_dict
from db.models import ConsolidationSettings, PurchaseOrder


@dataclass(frozen=True)
class ConsolidationProgress:
    orders_current: int
    orders_threshold: int
    percent_full: float
    time_remaining_seconds: int | None
    time_remaining_formatted: str

    def to_dict(self) -> dict:
        return asdict(self)


def format_time_remaining(seconds: float | None) -> str:
    """9000 → '2h 30m'. None or negative → '0h 0m'."""
    if seconds is None or seconds <= 0:
        return "0h 0m"
    total_minutes = int(seconds // 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"


def build_progress(
    po: PurchaseOrder,
    settings_row: ConsolidationSettings,
    now: datetime | None = None,
) -> ConsolidationProgress:
    now = now or datetime.utcnow()
    orders_current = po.total_orders or 0
    threshold = settings_row.order_quantity_threshold
    percent = round(orders_current / threshold * 100, 1) if threshold > 0 else 0.0

    remaining: int | None = None
    if settings_row.mode != "quantity":
        due_at = po.cycle_start_at + timedelta(hours=settings_row.time_interval_hours)
        remaining = max(0, int((due_at - now).total_seconds()))

    return ConsolidationProgress(
        orders_current=orders_current,
        orders_threshold=threshold,
        percent_full=percent,
        time_remaining_seconds=remaining,
        time_remaining_formatted=format_time_remaining(remaining),
    )


def get_urgency_level(progress: ConsolidationProgress, notify_threshold_percent: int = 80) -> str:
    """
    critical / high / medium / low.

    Fill level is checked first, then the remaining time when the mode has a
    time window.
    """
    if progress.percent_full >= 100:
        return "critical"
    if progress.percent_full >= notify_threshold_percent:
        return "high"
    if progress.percent_full >= 50:
        return "medium"

    if progress.time_remaining_seconds is not None:
        hours = progress.time_remaining_seconds / 3600
        if hours <= 1:
            return "critical"
        if hours <= 6:
            return "high"
        if hours <= 12:
            return "medium"
    return "low"


async def get_consolidation_stats(db: AsyncSession, tenant_id: uuid.UUID, now: datetime | None = None) -> dict:
    """Settings, the active PO and its progress in one payload."""
    now = now or datetime.utcnow()
    settings_row = await get_consolidation_settings(db, tenant_id)
    po = await get_open_po(db, tenant_id)

    stats = {
        "settings": settings_to_dict(settings_row),
        "active_po": None,
        "progress": None,
        "urgency": None,
    }
    if po is None:
        return stats

    progress = build_progress(po, settings_row, now)
    stats["active_po"] = po_to_dict(po)
    stats["progress"] = progress.to_dict()
    stats["urgency"] = get_urgency_level(progress, settings_row.notify_threshold_percent)
    return stats

