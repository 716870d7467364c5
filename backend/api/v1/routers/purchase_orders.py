"""
Purchase Order Router — consolidation cycle endpoints.

The cycle workflow:
  1. A PO opens → status='open', paid orders are linked to it
  2. Auto-close (time / quantity / hybrid) or manual close → 'closed'
  3. China tracking entered → 'in_transit_china', hybrid ids generated
  4. Stage updates → in_transit_usa → arrived_hub → processing → completed
  5. Each linked order gets a pickup QR; scanning it confirms delivery

Every status change lands in po_status_events. After each committed write a
change event is published for live dashboards.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_actor, get_tenant_db, get_tenant_id
from consolidation import delivery, engine
from consolidation.manifest import build_picking_manifest
from consolidation.states import POStatus
from realtime.publisher import publish_event

router = APIRouter(prefix="/api/v1/purchase-orders", tags=["purchase-orders"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class POResponse(BaseModel):
    po_id: UUID
    po_number: str
    status: str
    cycle_start_at: datetime
    cycle_end_at: datetime | None
    closed_at: datetime | None
    close_reason: str | None
    orders_at_close: int | None
    china_tracking_number: str | None
    china_tracking_entered_at: datetime | None
    ordered_at: datetime | None
    shipped_from_china_at: datetime | None
    arrived_usa_at: datetime | None
    arrived_hub_at: datetime | None
    processing_at: datetime | None
    completed_at: datetime | None
    total_orders: int
    total_quantity: int
    total_amount: float
    notes: str | None

    model_config = {"from_attributes": True}


class POCreateRequest(BaseModel):
    notes: str | None = None


class LinkOrdersResponse(BaseModel):
    po_id: UUID
    linked_count: int
    order_ids: list[UUID]
    total_orders: int


class CloseResponse(BaseModel):
    closed: bool
    po_id: UUID
    po_number: str
    close_reason: str
    orders_at_close: int
    links_synced: int = 0


class ChinaTrackingRequest(BaseModel):
    tracking_number: str = Field(..., max_length=100)


class StageUpdateRequest(BaseModel):
    status: POStatus


class StageUpdateResponse(BaseModel):
    po_id: UUID
    status: str
    links_synced: int | None = None
    links_updated: int | None = None


class POEventResponse(BaseModel):
    event_id: UUID
    from_status: str | None
    to_status: str
    reason: str | None
    actor: str | None
    details: dict
    created_at: datetime


class OrderPOInfoResponse(BaseModel):
    order_id: UUID
    po_id: UUID
    po_number: str
    po_status: str
    hybrid_tracking_id: str | None
    short_order_id: str
    current_status: str | None
    china_tracking_number: str | None
    shipped_from_china_at: datetime | None
    arrived_usa_at: datetime | None
    arrived_hub_at: datetime | None
    completed_at: datetime | None
    delivery_confirmed_at: datetime | None = None


class PickupQRRequest(BaseModel):
    regenerate: bool = False


class DeliveryConfirmRequest(BaseModel):
    qr_code: str = Field(..., max_length=100)


class OrderLinkResponse(BaseModel):
    link_id: UUID
    po_id: UUID
    order_id: UUID
    short_order_id: str
    hybrid_tracking_id: str | None
    pickup_qr_code: str | None
    pickup_qr_generated_at: datetime | None
    delivery_confirmed_at: datetime | None
    delivery_confirmed_by: str | None


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[POResponse])
async def list_purchase_orders(
    status: POStatus | None = None,
    limit: int = Query(50, ge=1, le=200),
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    """List the tenant's POs, newest first."""
    return await engine.list_purchase_orders(db, tenant_id, status=status, limit=limit)


@router.get("/current", response_model=POResponse | None)
async def get_current_po(
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    """The open PO, or null between cycles."""
    return await engine.get_open_po(db, tenant_id)


@router.get("/orders/{order_id}/po-info", response_model=OrderPOInfoResponse)
async def get_order_po_info(
    order_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Which PO ships this order, and where that PO is."""
    info = await engine.get_order_po_info(db, tenant_id, order_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Order is not linked to a purchase order")
    return info


@router.post("/links/{link_id}/pickup-qr", response_model=OrderLinkResponse)
async def generate_pickup_qr(
    link_id: UUID,
    body: PickupQRRequest | None = None,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Issue (or reissue) the pickup QR for one linked order."""
    regenerate = body.regenerate if body else False
    result = await delivery.generate_pickup_qr(db, tenant_id, link_id, regenerate=regenerate)
    await db.commit()
    await publish_event(tenant_id, "po_updated", {"po_id": result["po_id"]})
    return result


@router.post("/links/{link_id}/confirm-delivery", response_model=OrderLinkResponse)
async def confirm_delivery(
    link_id: UUID,
    body: DeliveryConfirmRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    actor: str | None = Depends(get_actor),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Scan the buyer's pickup QR to confirm the hand-over. 422 on a wrong code."""
    result = await delivery.confirm_delivery(db, tenant_id, link_id, body.qr_code, actor=actor)
    await db.commit()
    await publish_event(tenant_id, "po_updated", {"po_id": result["po_id"]})
    return result


@router.get("/{po_id}", response_model=POResponse)
async def get_purchase_order(
    po_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    return await engine.get_po(db, tenant_id, po_id)


@router.post("/", response_model=POResponse, status_code=201)
async def create_purchase_order(
    body: POCreateRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    actor: str | None = Depends(get_actor),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Open a new cycle. 409 if one is already open."""
    po = await engine.create_po(db, tenant_id, notes=body.notes, actor=actor)
    await db.commit()
    await db.refresh(po)
    await publish_event(tenant_id, "po_updated", {"po_id": po.po_id})
    return po


@router.post("/{po_id}/link-orders", response_model=LinkOrdersResponse)
async def link_orders(
    po_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Link every paid order that has no PO yet. Safe to repeat."""
    result = await engine.link_orders_to_po(db, tenant_id, po_id)
    await db.commit()
    if result["linked_count"]:
        await publish_event(
            tenant_id, "orders_linked", {"po_id": result["po_id"], "linked_count": result["linked_count"]}
        )
    return result


@router.post("/{po_id}/close", response_model=CloseResponse)
async def close_purchase_order(
    po_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    actor: str | None = Depends(get_actor),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Close the cycle now, regardless of thresholds."""
    result = await engine.manual_close_po(db, tenant_id, po_id, actor=actor)
    await db.commit()
    await publish_event(tenant_id, "po_updated", {"po_id": result["po_id"]})
    return result


@router.post("/{po_id}/china-tracking", response_model=StageUpdateResponse)
async def enter_china_tracking(
    po_id: UUID,
    body: ChinaTrackingRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    actor: str | None = Depends(get_actor),
    db: AsyncSession = Depends(get_tenant_db),
):
    result = await engine.enter_china_tracking(db, tenant_id, po_id, body.tracking_number, actor=actor)
    await db.commit()
    await publish_event(tenant_id, "po_updated", {"po_id": result["po_id"]})
    return result


@router.post("/{po_id}/stage", response_model=StageUpdateResponse)
async def update_stage(
    po_id: UUID,
    body: StageUpdateRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    actor: str | None = Depends(get_actor),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Advance the PO one logistics stage. 409 if the move is not allowed."""
    result = await engine.update_po_stage(db, tenant_id, po_id, body.status, actor=actor)
    await db.commit()
    await publish_event(tenant_id, "po_updated", {"po_id": result["po_id"]})
    return result


@router.get("/{po_id}/manifest")
async def get_picking_manifest(
    po_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    """Per-customer picking blocks plus a SKU roll-up, ready for PDF rendering."""
    return await build_picking_manifest(db, tenant_id, po_id)


@router.get("/{po_id}/history", response_model=list[POEventResponse])
async def get_po_history(
    po_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_tenant_db),
):
    return await engine.get_po_history(db, tenant_id, po_id)
