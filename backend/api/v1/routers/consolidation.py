"""
Consolidation Router — cycle progress and auto-close settings.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_tenant_db, get_tenant_id
from consolidation.engine import check_auto_close, get_open_po
from consolidation.progress import get_consolidation_stats
from consolidation.settings import get_consolidation_settings, settings_to_dict, update_consolidation_settings
from realtime.publisher import publish_event

router = APIRouter(prefix="/api/v1/consolidation", tags=["consolidation"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class SettingsResponse(BaseModel):
    mode: str
    time_interval_hours: int
    order_quantity_threshold: int
    notify_threshold_percent: int
    is_active: bool
    last_auto_close_at: datetime | None
    next_scheduled_close_at: datetime | None


class SettingsUpdateRequest(BaseModel):
    """Partial update. Bad values are rejected before anything is written."""

    mode: Literal["time", "quantity", "hybrid"] | None = None
    time_interval_hours: int | None = Field(None, gt=0)
    order_quantity_threshold: int | None = Field(None, gt=0)
    notify_threshold_percent: int | None = Field(None, gt=0, le=100)
    is_active: bool | None = None


class ProgressResponse(BaseModel):
    orders_current: int
    orders_threshold: int
    percent_full: float
    time_remaining_seconds: int | None
    time_remaining_formatted: str


class StatsResponse(BaseModel):
    settings: SettingsResponse
    active_po: dict | None
    progress: ProgressResponse | None
    urgency: str | None


class AutoCloseResponse(BaseModel):
    closed: bool
    reason: str | None = None
    po_id: UUID | None = None
    po_number: str | None = None
    close_reason: str | None = None
    orders_at_close: int | None = None
    links_synced: int | None = None


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Settings, the active PO, its progress and urgency."""
    stats = await get_consolidation_stats(db, tenant_id)
    await db.commit()
    return stats


@router.get("/settings", response_model=SettingsResponse)
async def get_settings_endpoint(
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    row = await get_consolidation_settings(db, tenant_id)
    await db.commit()
    return settings_to_dict(row)


@router.put("/settings", response_model=SettingsResponse)
async def update_settings_endpoint(
    body: SettingsUpdateRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    open_po = await get_open_po(db, tenant_id)
    row = await update_consolidation_settings(
        db,
        tenant_id,
        **body.model_dump(exclude_none=True),
        open_cycle_start=open_po.cycle_start_at if open_po else None,
    )
    await db.commit()
    await publish_event(tenant_id, "settings_updated", {})
    return settings_to_dict(row)


@router.post("/check-auto-close", response_model=AutoCloseResponse)
async def run_auto_close_check(
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Evaluate the open PO against the tenant's thresholds now."""
    result = await check_auto_close(db, tenant_id)
    await db.commit()
    if result["closed"]:
        await publish_event(tenant_id, "po_updated", {"po_id": result["po_id"]})
    return result
