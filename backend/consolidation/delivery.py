"""
Pickup QR codes and delivery confirmation for linked orders.

A link gets its QR once the PO has China tracking, so the code always sits
next to a hybrid tracking id on the label. Delivery is confirmed by scanning
that QR at the hub or pickup point after the PO has arrived.
"""

import secrets
import uuid
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from consolidation.states import POStatus
from consolidation.tracking import normalize_qr_code, pickup_qr_code
from core.errors import ConflictError, InvalidInputError, InvalidTransitionError, NotFoundError
from db.models import OrderPOLink, PurchaseOrder

logger = structlog.get_logger()

DELIVERABLE_STATUSES = frozenset({POStatus.ARRIVED_HUB, POStatus.PROCESSING, POStatus.COMPLETED})
QR_TOKEN_BYTES = 4


def link_to_dict(link: OrderPOLink) -> dict:
    return {
        "link_id": str(link.link_id),
        "po_id": str(link.po_id),
        "order_id": str(link.order_id),
        "short_order_id": link.short_order_id,
        "hybrid_tracking_id": link.hybrid_tracking_id,
        "pickup_qr_code": link.pickup_qr_code,
        "pickup_qr_generated_at": link.pickup_qr_generated_at,
        "delivery_confirmed_at": link.delivery_confirmed_at,
        "delivery_confirmed_by": link.delivery_confirmed_by,
    }


async def _get_link(db: AsyncSession, tenant_id: uuid.UUID, link_id: uuid.UUID) -> tuple[OrderPOLink, PurchaseOrder]:
    result = await db.execute(
        select(OrderPOLink, PurchaseOrder)
        .join(PurchaseOrder, PurchaseOrder.po_id == OrderPOLink.po_id)
        .where(OrderPOLink.link_id == link_id, OrderPOLink.tenant_id == tenant_id)
    )
    row = result.first()
    if row is None:
        raise NotFoundError(f"Order link {link_id} not found")
    return row[0], row[1]


async def generate_pickup_qr(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    link_id: uuid.UUID,
    regenerate: bool = False,
    now: datetime | None = None,
) -> dict:
    """
    Issue the pickup QR for one linked order.

    Returns the existing code unless `regenerate` is set. A delivered order
    keeps the code it was confirmed with.
    """
    link, po = await _get_link(db, tenant_id, link_id)
    if not link.hybrid_tracking_id:
        raise ConflictError(f"PO {po.po_number} has no China tracking yet; pickup QR needs the hybrid tracking id")
    if link.delivery_confirmed_at is not None:
        raise ConflictError("Delivery already confirmed for this order")
    if link.pickup_qr_code and not regenerate:
        return link_to_dict(link)

    now = now or datetime.utcnow()
    link.pickup_qr_code = pickup_qr_code(link.short_order_id, secrets.token_hex(QR_TOKEN_BYTES))
    link.pickup_qr_generated_at = now
    await db.flush()

    logger.info(
        "consolidation.pickup_qr_generated",
        tenant_id=str(tenant_id),
        po_id=str(po.po_id),
        link_id=str(link.link_id),
        regenerated=regenerate,
    )
    return link_to_dict(link)


async def confirm_delivery(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    link_id: uuid.UUID,
    qr_code: str,
    actor: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Mark one linked order delivered. The scanned code must match the issued QR."""
    scanned = normalize_qr_code(qr_code)
    if not scanned:
        raise InvalidInputError("Pickup QR code is required")

    link, po = await _get_link(db, tenant_id, link_id)
    if link.delivery_confirmed_at is not None:
        raise ConflictError("Delivery already confirmed for this order")
    if not link.pickup_qr_code:
        raise ConflictError("No pickup QR has been issued for this order")
    if POStatus(po.status) not in DELIVERABLE_STATUSES:
        raise InvalidTransitionError(
            po.status,
            "delivered",
            detail=f"PO {po.po_number} has not arrived at the hub yet",
        )
    if not secrets.compare_digest(scanned, normalize_qr_code(link.pickup_qr_code)):
        logger.warning("consolidation.pickup_qr_mismatch", tenant_id=str(tenant_id), link_id=str(link.link_id))
        raise InvalidInputError("Pickup QR code does not match this order")

    now = now or datetime.utcnow()
    link.delivery_confirmed_at = now
    link.delivery_confirmed_by = actor
    await db.flush()

    logger.info(
        "consolidation.delivery_confirmed",
        tenant_id=str(tenant_id),
        po_id=str(po.po_id),
        link_id=str(link.link_id),
        actor=actor,
    )
    return link_to_dict(link)
