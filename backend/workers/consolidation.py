"""
Consolidation Worker — keeps every tenant's PO cycle moving.

Each run, per tenant:
  1. Make sure a PO is open (opens the next cycle after a close)
  2. Link newly paid orders to it
  3. Close it if the time / quantity rule says so
  4. Publish change events for live dashboards

Schedule: crontab(minute="*/N"), N = consolidation_check_minutes
Queue: consolidation
"""

import asyncio
import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


@celery_app.task(
    name="workers.consolidation.run_consolidation_cycle",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
)
def run_consolidation_cycle(self, tenant_id: str):
    """Open, fill and auto-close the tenant's PO. Safe to run concurrently; conflicts retry."""
    run_id = self.request.id or "manual"
    logger.info("consolidation_cycle.started", tenant_id=tenant_id, run_id=run_id)

    async def _run():
        from consolidation.engine import check_auto_close, get_or_create_active_po, link_orders_to_po
        from core.config import get_settings
        from realtime.publisher import publish_event

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        tenant_uuid = uuid.UUID(str(tenant_id))
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with async_session() as db:
                po, created = await get_or_create_active_po(db, tenant_uuid)
                link_result = await link_orders_to_po(db, tenant_uuid, po.po_id)
                close_result = await check_auto_close(db, tenant_uuid)
                await db.commit()
        finally:
            await engine.dispose()

        if created:
            await publish_event(tenant_uuid, "po_updated", {"po_id": po.po_id})
        if link_result["linked_count"]:
            await publish_event(
                tenant_uuid,
                "orders_linked",
                {"po_id": po.po_id, "linked_count": link_result["linked_count"]},
            )
        if close_result["closed"]:
            await publish_event(tenant_uuid, "po_updated", {"po_id": po.po_id})

        summary = {
            "status": "success",
            "tenant_id": tenant_id,
            "po_id": str(po.po_id),
            "po_created": created,
            "orders_linked": link_result["linked_count"],
            "closed": close_result["closed"],
            "close_reason": close_result.get("close_reason"),
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.info("consolidation_cycle.completed", **summary)
        return summary

    try:
        return asyncio.run(_run())
    except Exception as exc:
        logger.error("consolidation_cycle.failed", tenant_id=tenant_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
