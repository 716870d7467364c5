"""
Consolidation Engine: purchase-order cycles that batch paid orders.

Lifecycle of a cycle:
1. One PO per tenant is open at a time (draft/open accept links)
2. Paid orders are linked to the open PO, totals accumulate
3. The PO closes on time, quantity or whichever comes first (hybrid),
   or manually
4. China tracking is entered, every link gets its hybrid tracking id
5. The PO walks the logistics stages until completed

The open PO is always read from storage. The partial unique index on
purchase_orders and the unique order_id on order_po_links are the guards
against concurrent writers; collisions surface as ConflictError.
"""

import uuid
from datetime import datetime, timedelta

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from consolidation.settings import get_consolidation_settings, scheduled_close_at
from consolidation.states import (
    ACCEPTING_STATUSES,
    PRE_TRACKING_STATUSES,
    STAGE_TIMESTAMPS,
    POStatus,
    parse_status,
    validate_transition,
)
from consolidation.tracking import generate_hybrid_tracking_id, short_order_id
from core.config import get_settings
from core.errors import ConflictError, InvalidInputError, InvalidTransitionError, NotFoundError
from db.models import Commune, Department, Order, OrderPOLink, POStatusEvent, PurchaseOrder

logger = structlog.get_logger()

EXCLUDED_ORDER_STATUSES = ("cancelled", "refunded")

CLOSE_REASON_TIME = "time_threshold"
CLOSE_REASON_QUANTITY = "quantity_threshold"
CLOSE_REASON_MANUAL = "manual"


# ─── Serialization ─────────────────────────────────────────────────────────


def po_to_dict(po: PurchaseOrder) -> dict:
    return {
        "po_id": str(po.po_id),
        "po_number": po.po_number,
        "status": po.status,
        "cycle_start_at": po.cycle_start_at,
        "cycle_end_at": po.cycle_end_at,
        "closed_at": po.closed_at,
        "close_reason": po.close_reason,
        "orders_at_close": po.orders_at_close,
        "china_tracking_number": po.china_tracking_number,
        "china_tracking_entered_at": po.china_tracking_entered_at,
        "ordered_at": po.ordered_at,
        "shipped_from_china_at": po.shipped_from_china_at,
        "arrived_usa_at": po.arrived_usa_at,
        "arrived_hub_at": po.arrived_hub_at,
        "processing_at": po.processing_at,
        "completed_at": po.completed_at,
        "total_orders": po.total_orders or 0,
        "total_quantity": po.total_quantity or 0,
        "total_amount": round(po.total_amount or 0.0, 2),
        "notes": po.notes,
        "created_at": po.created_at,
    }


# ─── Lookups ───────────────────────────────────────────────────────────────


async def get_open_po(db: AsyncSession, tenant_id: uuid.UUID) -> PurchaseOrder | None:
    """The tenant's single draft/open PO, if any."""
    result = await db.execute(
        select(PurchaseOrder)
        .where(
            PurchaseOrder.tenant_id == tenant_id,
            PurchaseOrder.status.in_([s.value for s in ACCEPTING_STATUSES]),
        )
        .order_by(PurchaseOrder.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_po(db: AsyncSession, tenant_id: uuid.UUID, po_id: uuid.UUID) -> PurchaseOrder:
    result = await db.execute(
        select(PurchaseOrder).where(PurchaseOrder.po_id == po_id, PurchaseOrder.tenant_id == tenant_id)
    )
    po = result.scalar_one_or_none()
    if po is None:
        raise NotFoundError(f"PO {po_id} not found")
    return po


async def list_purchase_orders(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    status: str | None = None,
    limit: int = 50,
) -> list[PurchaseOrder]:
    query = select(PurchaseOrder).where(PurchaseOrder.tenant_id == tenant_id)
    if status:
        query = query.where(PurchaseOrder.status == parse_status(status).value)
    query = query.order_by(PurchaseOrder.created_at.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_po_history(db: AsyncSession, tenant_id: uuid.UUID, po_id: uuid.UUID) -> list[dict]:
    """Status events for a PO, oldest first."""
    await get_po(db, tenant_id, po_id)
    result = await db.execute(
        select(POStatusEvent)
        .where(POStatusEvent.po_id == po_id, POStatusEvent.tenant_id == tenant_id)
        .order_by(POStatusEvent.created_at, POStatusEvent.event_id)
    )
    return [
        {
            "event_id": str(e.event_id),
            "from_status": e.from_status,
            "to_status": e.to_status,
            "reason": e.reason,
            "actor": e.actor,
            "details": e.details or {},
            "created_at": e.created_at,
        }
        for e in result.scalars().all()
    ]


async def get_order_po_info(db: AsyncSession, tenant_id: uuid.UUID, order_id: uuid.UUID) -> dict | None:
    """PO number, status, tracking and stage timestamps for one order. None if not linked yet."""
    result = await db.execute(
        select(OrderPOLink, PurchaseOrder)
        .join(PurchaseOrder, PurchaseOrder.po_id == OrderPOLink.po_id)
        .where(OrderPOLink.order_id == order_id, OrderPOLink.tenant_id == tenant_id)
    )
    row = result.first()
    if row is None:
        return None
    link, po = row
    return {
        "order_id": str(order_id),
        "po_id": str(po.po_id),
        "po_number": po.po_number,
        "po_status": po.status,
        "hybrid_tracking_id": link.hybrid_tracking_id,
        "short_order_id": link.short_order_id,
        "current_status": link.current_status,
        "china_tracking_number": po.china_tracking_number,
        "shipped_from_china_at": po.shipped_from_china_at,
        "arrived_usa_at": po.arrived_usa_at,
        "arrived_hub_at": po.arrived_hub_at,
        "completed_at": po.completed_at,
        "delivery_confirmed_at": link.delivery_confirmed_at,
    }


# ─── PO creation ───────────────────────────────────────────────────────────


async def _next_po_number(db: AsyncSession, tenant_id: uuid.UUID, now: datetime) -> str:
    count = (
        await db.execute(select(func.count(PurchaseOrder.po_id)).where(PurchaseOrder.tenant_id == tenant_id))
    ).scalar() or 0
    prefix = get_settings().po_number_prefix
    return f"{prefix}-{now:%Y%m%d}-{count + 1:04d}"


async def create_po(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    notes: str | None = None,
    actor: str | None = None,
    now: datetime | None = None,
) -> PurchaseOrder:
    """
    Open a new consolidation cycle.

    Raises ConflictError if the tenant already has a draft/open PO, including
    when a concurrent writer wins the race and the unique index rejects ours.
    """
    now = now or datetime.utcnow()
    existing = await get_open_po(db, tenant_id)
    if existing is not None:
        raise ConflictError(f"PO {existing.po_number} is already open")

    po = PurchaseOrder(
        tenant_id=tenant_id,
        po_number=await _next_po_number(db, tenant_id, now),
        status=POStatus.OPEN.value,
        cycle_start_at=now,
        total_orders=0,
        total_quantity=0,
        total_amount=0.0,
        created_by=actor,
        notes=notes,
        created_at=now,
    )
    db.add(po)
    try:
        await db.flush()
    except IntegrityError as exc:
        logger.warning("consolidation.po_create_conflict", tenant_id=str(tenant_id))
        raise ConflictError("Another PO was opened concurrently") from exc

    _record_event(db, po, None, POStatus.OPEN, reason="cycle_started", actor=actor, now=now)

    settings_row = await get_consolidation_settings(db, tenant_id)
    settings_row.next_scheduled_close_at = scheduled_close_at(settings_row, now)
    await db.flush()

    logger.info("consolidation.po_created", tenant_id=str(tenant_id), po_id=str(po.po_id), po_number=po.po_number)
    return po


async def get_or_create_active_po(
    db: AsyncSession, tenant_id: uuid.UUID, now: datetime | None = None
) -> tuple[PurchaseOrder, bool]:
    """Return (po, created). Creates a fresh cycle when none is open."""
    po = await get_open_po(db, tenant_id)
    if po is not None:
        return po, False
    return await create_po(db, tenant_id, actor="system", now=now), True


# ─── Linking ───────────────────────────────────────────────────────────────


async def link_orders_to_po(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    po_id: uuid.UUID,
    now: datetime | None = None,
) -> dict:
    """
    Link every paid, live order that has no PO yet.

    Idempotent: orders already linked (to this or any PO) are skipped.
    """
    now = now or datetime.utcnow()
    po = await get_po(db, tenant_id, po_id)
    if parse_status(po.status) not in ACCEPTING_STATUSES:
        raise ConflictError(f"PO {po.po_number} is {po.status} and no longer accepts orders")

    already_linked = select(OrderPOLink.order_id)
    result = await db.execute(
        select(Order, Commune.code, Department.code)
        .outerjoin(Commune, Commune.commune_id == Order.commune_id)
        .outerjoin(Department, Department.department_id == Commune.department_id)
        .where(
            Order.tenant_id == tenant_id,
            Order.payment_status == "paid",
            Order.status.notin_(EXCLUDED_ORDER_STATUSES),
            Order.order_id.notin_(already_linked),
        )
        .order_by(Order.created_at, Order.order_id)
    )
    rows = result.all()

    linked_ids: list[str] = []
    added_quantity = 0
    added_amount = 0.0
    for order, commune_code, department_code in rows:
        db.add(
            OrderPOLink(
                tenant_id=tenant_id,
                po_id=po.po_id,
                order_id=order.order_id,
                source_type=order.source_type,
                buyer_name=order.buyer_name,
                buyer_phone=order.buyer_phone,
                department_code=department_code,
                commune_code=commune_code,
                short_order_id=short_order_id(order.order_id),
                unit_count=order.total_quantity or 0,
                current_status=po.status,
                status_synced_at=now,
                created_at=now,
            )
        )
        linked_ids.append(str(order.order_id))
        added_quantity += order.total_quantity or 0
        added_amount += order.total_amount or 0.0

    if not linked_ids:
        return {"po_id": str(po.po_id), "linked_count": 0, "order_ids": [], "total_orders": po.total_orders}

    po.total_orders = (po.total_orders or 0) + len(linked_ids)
    po.total_quantity = (po.total_quantity or 0) + added_quantity
    po.total_amount = round((po.total_amount or 0.0) + added_amount, 2)
    po.updated_at = now

    try:
        await db.flush()
    except IntegrityError as exc:
        # Another worker linked one of these orders first; the next run picks up the rest
        logger.warning("consolidation.link_conflict", tenant_id=str(tenant_id), po_id=str(po.po_id))
        raise ConflictError("Orders were linked concurrently, retry") from exc

    logger.info(
        "consolidation.orders_linked",
        tenant_id=str(tenant_id),
        po_id=str(po.po_id),
        linked=len(linked_ids),
        total_orders=po.total_orders,
    )
    return {
        "po_id": str(po.po_id),
        "linked_count": len(linked_ids),
        "order_ids": linked_ids,
        "total_orders": po.total_orders,
    }


# ─── Status changes ────────────────────────────────────────────────────────


def _record_event(
    db: AsyncSession,
    po: PurchaseOrder,
    from_status: POStatus | None,
    to_status: POStatus,
    reason: str | None = None,
    actor: str | None = None,
    details: dict | None = None,
    now: datetime | None = None,
) -> None:
    db.add(
        POStatusEvent(
            tenant_id=po.tenant_id,
            po_id=po.po_id,
            from_status=from_status.value if from_status else None,
            to_status=to_status.value,
            reason=reason,
            actor=actor,
            details=details or {},
            created_at=now or datetime.utcnow(),
        )
    )


async def _sync_link_statuses(db: AsyncSession, po: PurchaseOrder, now: datetime) -> int:
    result = await db.execute(select(OrderPOLink).where(OrderPOLink.po_id == po.po_id))
    links = result.scalars().all()
    for link in links:
        link.previous_status = link.current_status
        link.current_status = po.status
        link.status_synced_at = now
    return len(links)


async def _apply_status(
    db: AsyncSession,
    po: PurchaseOrder,
    new_status: POStatus,
    *,
    reason: str | None,
    actor: str | None,
    now: datetime,
    details: dict | None = None,
) -> None:
    current = parse_status(po.status)
    target = validate_transition(current, new_status)
    po.status = target.value
    po.updated_at = now
    stamp = STAGE_TIMESTAMPS.get(target)
    if stamp:
        setattr(po, stamp, now)
    _record_event(db, po, current, target, reason=reason, actor=actor, details=details, now=now)


async def _close(
    db: AsyncSession,
    po: PurchaseOrder,
    reason: str,
    actor: str | None,
    now: datetime,
) -> dict:
    await _apply_status(
        db,
        po,
        POStatus.CLOSED,
        reason=reason,
        actor=actor,
        now=now,
        details={"orders_at_close": po.total_orders or 0},
    )
    po.cycle_end_at = now
    po.close_reason = reason
    po.orders_at_close = po.total_orders or 0
    synced = await _sync_link_statuses(db, po, now)
    await db.flush()
    logger.info(
        "consolidation.po_closed",
        tenant_id=str(po.tenant_id),
        po_id=str(po.po_id),
        po_number=po.po_number,
        close_reason=reason,
        orders_at_close=po.orders_at_close,
        links_synced=synced,
    )
    return {
        "closed": True,
        "po_id": str(po.po_id),
        "po_number": po.po_number,
        "close_reason": reason,
        "orders_at_close": po.orders_at_close,
        "links_synced": synced,
    }


async def _quantity_reached_at(db: AsyncSession, po: PurchaseOrder, threshold: int) -> datetime | None:
    """When the threshold-th link was created, or None if not reached."""
    result = await db.execute(
        select(OrderPOLink.created_at)
        .where(OrderPOLink.po_id == po.po_id)
        .order_by(OrderPOLink.created_at, OrderPOLink.link_id)
        .offset(threshold - 1)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def check_auto_close(db: AsyncSession, tenant_id: uuid.UUID, now: datetime | None = None) -> dict:
    """
    Close the open PO if the tenant's settings say it is due.

    Returns {"closed": False, "reason": ...} when nothing happened. Link
    rows follow the PO to `closed`; the orders themselves are not touched.
    """
    now = now or datetime.utcnow()
    settings_row = await get_consolidation_settings(db, tenant_id)
    if not settings_row.is_active:
        return {"closed": False, "reason": "inactive"}

    po = await get_open_po(db, tenant_id)
    if po is None:
        return {"closed": False, "reason": "no_open_po"}
    if po.status != POStatus.OPEN.value:
        return {"closed": False, "reason": "po_in_draft", "po_id": str(po.po_id)}

    time_due_at = po.cycle_start_at + timedelta(hours=settings_row.time_interval_hours)
    time_met = now >= time_due_at
    quantity_met = (po.total_orders or 0) >= settings_row.order_quantity_threshold

    close_reason = None
    if settings_row.mode == "time" and time_met:
        close_reason = CLOSE_REASON_TIME
    elif settings_row.mode == "quantity" and quantity_met:
        close_reason = CLOSE_REASON_QUANTITY
    elif settings_row.mode == "hybrid":
        if time_met and quantity_met:
            reached_at = await _quantity_reached_at(db, po, settings_row.order_quantity_threshold)
            close_reason = (
                CLOSE_REASON_QUANTITY if reached_at is not None and reached_at < time_due_at else CLOSE_REASON_TIME
            )
        elif time_met:
            close_reason = CLOSE_REASON_TIME
        elif quantity_met:
            close_reason = CLOSE_REASON_QUANTITY

    if close_reason is None:
        return {"closed": False, "reason": "thresholds_not_met", "po_id": str(po.po_id)}

    summary = await _close(db, po, close_reason, actor="system", now=now)
    settings_row.last_auto_close_at = now
    settings_row.next_scheduled_close_at = None
    await db.flush()
    return summary


async def manual_close_po(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    po_id: uuid.UUID,
    actor: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Close regardless of thresholds."""
    now = now or datetime.utcnow()
    po = await get_po(db, tenant_id, po_id)
    summary = await _close(db, po, CLOSE_REASON_MANUAL, actor=actor, now=now)
    settings_row = await get_consolidation_settings(db, tenant_id)
    settings_row.next_scheduled_close_at = None
    await db.flush()
    return summary


async def enter_china_tracking(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    po_id: uuid.UUID,
    tracking_number: str,
    actor: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Attach the China tracking number, stamp hybrid ids on every link, move to in_transit_china."""
    tracking = (tracking_number or "").strip()
    if not tracking:
        raise InvalidInputError("China tracking number is required")

    now = now or datetime.utcnow()
    po = await get_po(db, tenant_id, po_id)
    current = parse_status(po.status)
    if current not in PRE_TRACKING_STATUSES or po.china_tracking_number:
        raise InvalidTransitionError(
            current.value,
            POStatus.IN_TRANSIT_CHINA.value,
            detail=f"Cannot enter China tracking on PO in status '{po.status}'",
        )

    po.china_tracking_number = tracking
    po.china_tracking_entered_at = now

    result = await db.execute(select(OrderPOLink).where(OrderPOLink.po_id == po.po_id))
    links = result.scalars().all()
    for link in links:
        link.hybrid_tracking_id = generate_hybrid_tracking_id(
            link.department_code,
            link.commune_code,
            po.po_number,
            tracking,
            link.short_order_id,
        )

    await _apply_status(
        db,
        po,
        POStatus.IN_TRANSIT_CHINA,
        reason="china_tracking_entered",
        actor=actor,
        now=now,
        details={"china_tracking_number": tracking},
    )
    await _sync_link_statuses(db, po, now)
    await db.flush()

    logger.info(
        "consolidation.china_tracking_entered",
        tenant_id=str(tenant_id),
        po_id=str(po.po_id),
        links_updated=len(links),
    )
    return {"po_id": str(po.po_id), "status": po.status, "links_updated": len(links)}


async def update_po_stage(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    po_id: uuid.UUID,
    new_status: str | POStatus,
    actor: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Advance a PO along the transition table and sync every link's status.

    `closed` goes through manual_close_po. `in_transit_china` is only
    reachable through enter_china_tracking, which assigns the hybrid ids.
    """
    now = now or datetime.utcnow()
    target = parse_status(new_status)
    po = await get_po(db, tenant_id, po_id)

    if target is POStatus.IN_TRANSIT_CHINA:
        raise InvalidTransitionError(
            po.status,
            target.value,
            detail="Enter the China tracking number to move a PO to in_transit_china",
        )

    if target is POStatus.CLOSED:
        summary = await manual_close_po(db, tenant_id, po_id, actor=actor, now=now)
        synced = summary["links_synced"]
    else:
        await _apply_status(db, po, target, reason="stage_update", actor=actor, now=now)
        synced = await _sync_link_statuses(db, po, now)
    await db.flush()
    logger.info(
        "consolidation.po_stage_updated",
        tenant_id=str(tenant_id),
        po_id=str(po.po_id),
        status=po.status,
        links_synced=synced,
    )
    return {"po_id": str(po.po_id), "status": po.status, "links_synced": synced}
