"""
Picking manifest for a PO: one block per linked order, plus a SKU roll-up
that warehouse staff pick from. Rendering (PDF, labels) happens elsewhere.
"""

import uuid
from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from consolidation.engine import get_po, po_to_dict
from db.models import OrderItem, OrderPOLink

UNNAMED_BUYER = "Unnamed"


def _item_to_dict(item: OrderItem) -> dict:
    return {
        "sku": item.sku,
        "product_name": item.product_name,
        "color": item.color,
        "size": item.size,
        "image_url": item.image_url,
        "quantity": item.quantity,
    }


async def build_picking_manifest(db: AsyncSession, tenant_id: uuid.UUID, po_id: uuid.UUID) -> dict:
    po = await get_po(db, tenant_id, po_id)

    links = (
        (
            await db.execute(
                select(OrderPOLink)
                .where(OrderPOLink.po_id == po.po_id)
                .order_by(OrderPOLink.buyer_name, OrderPOLink.short_order_id)
            )
        )
        .scalars()
        .all()
    )

    items_by_order: dict[uuid.UUID, list[OrderItem]] = defaultdict(list)
    if links:
        item_rows = (
            (
                await db.execute(
                    select(OrderItem)
                    .where(OrderItem.order_id.in_([link.order_id for link in links]))
                    .order_by(OrderItem.product_name, OrderItem.sku)
                )
            )
            .scalars()
            .all()
        )
        for item in item_rows:
            items_by_order[item.order_id].append(item)

    customers = []
    totals: dict[tuple, int] = defaultdict(int)
    names: dict[tuple, str] = {}
    for link in links:
        order_items = items_by_order.get(link.order_id, [])
        customers.append(
            {
                "link_id": str(link.link_id),
                "order_id": str(link.order_id),
                "short_order_id": link.short_order_id,
                "buyer_name": link.buyer_name or UNNAMED_BUYER,
                "buyer_phone": link.buyer_phone,
                "hybrid_tracking_id": link.hybrid_tracking_id,
                "department_code": link.department_code,
                "commune_code": link.commune_code,
                "pickup_qr_code": link.pickup_qr_code,
                "delivery_confirmed_at": link.delivery_confirmed_at,
                "items": [_item_to_dict(i) for i in order_items],
            }
        )
        for item in order_items:
            key = (item.sku, item.color, item.size)
            totals[key] += item.quantity
            names[key] = item.product_name

    roll_up = [
        {"sku": sku, "product_name": names[(sku, color, size)], "color": color, "size": size, "quantity": qty}
        for (sku, color, size), qty in sorted(totals.items(), key=lambda kv: (kv[0][0], kv[0][1] or "", kv[0][2] or ""))
    ]

    return {"po": po_to_dict(po), "customers": customers, "items": roll_up}
