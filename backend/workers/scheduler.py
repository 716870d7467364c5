"""
Beat fan-out for marketplace tenants.

Celery beat fires one dispatch_active_tenants run per interval; it looks up
every tenant whose account is live and sends the tenant-scoped worker task
once per tenant, with tenant_id filled in. Tenants that paused consolidation
in their settings are left out unless include_paused is set. Tenants with
no settings row yet are still dispatched (the cycle creates their defaults).
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()

LIVE_TENANT_STATUSES = ("active", "trial")
WORKER_TASK_PREFIX = "workers."


async def _tenants_to_dispatch(db: AsyncSession, statuses: tuple[str, ...], include_paused: bool) -> list[str]:
    from db.models import ConsolidationSettings, Tenant

    query = (
        select(Tenant.tenant_id)
        .outerjoin(ConsolidationSettings, ConsolidationSettings.tenant_id == Tenant.tenant_id)
        .where(Tenant.status.in_(statuses))
        .order_by(Tenant.created_at)
    )
    if not include_paused:
        query = query.where(or_(ConsolidationSettings.id.is_(None), ConsolidationSettings.is_active.is_(True)))
    result = await db.execute(query)
    return [str(row.tenant_id) for row in result.all()]


@celery_app.task(
    name="workers.scheduler.dispatch_active_tenants",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def dispatch_active_tenants(
    self,
    task_name: str,
    task_kwargs: dict | None = None,
    statuses: list[str] | None = None,
    include_paused: bool = False,
):
    """Send `task_name` once per live tenant. Only tasks under workers.* may be fanned out."""
    from core.config import get_settings

    run_id = self.request.id or "manual"
    tenant_statuses = tuple(statuses or LIVE_TENANT_STATUSES)

    if not task_name.startswith(WORKER_TASK_PREFIX):
        logger.warning("scheduler.tenant_fanout_refused", task_name=task_name, run_id=run_id)
        return {"status": "failed", "reason": "invalid_task_name", "task_name": task_name}

    async def _fan_out():
        engine = create_async_engine(get_settings().database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession)
            async with session_factory() as db:
                tenant_ids = await _tenants_to_dispatch(db, tenant_statuses, include_paused)
        finally:
            await engine.dispose()

        for tenant_id in tenant_ids:
            celery_app.send_task(task_name, kwargs={**(task_kwargs or {}), "tenant_id": tenant_id})

        summary = {
            "status": "success",
            "task_name": task_name,
            "tenant_count": len(tenant_ids),
            "dispatched_count": len(tenant_ids),
            "tenant_ids": tenant_ids,
            "statuses": list(tenant_statuses),
            "include_paused": include_paused,
            "triggered_at": datetime.now(timezone.utc).isoformat(),
            "run_id": run_id,
        }
        logger.info(
            "scheduler.tenants_dispatched",
            task_name=task_name,
            tenant_count=len(tenant_ids),
            run_id=run_id,
        )
        return summary

    try:
        return asyncio.run(_fan_out())
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "scheduler.tenant_fanout_failed",
            task_name=task_name,
            run_id=run_id,
            error=str(exc),
            exc_info=True,
        )
        raise self.retry(exc=exc)
