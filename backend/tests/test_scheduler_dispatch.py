import asyncio
import uuid
from types import SimpleNamespace

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.session import Base
from workers.scheduler import dispatch_active_tenants


def test_dispatch_skips_inactive_and_paused_tenants(tmp_path, monkeypatch):
    from db.models import ConsolidationSettings, Tenant

    db_path = tmp_path / "dispatch.db"
    db_url = f"sqlite+aiosqlite:///{db_path}"
    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _seed() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with session_factory() as db:
            db.add_all(
                [
                    Tenant(
                        tenant_id=uuid.UUID("00000000-0000-0000-0000-000000000101"),
                        name="Active Market",
                        email="active@example.com",
                        status="active",
                        plan="professional",
                    ),
                    Tenant(
                        tenant_id=uuid.UUID("00000000-0000-0000-0000-000000000102"),
                        name="Trial Market",
                        email="trial@example.com",
                        status="trial",
                        plan="starter",
                    ),
                    Tenant(
                        tenant_id=uuid.UUID("00000000-0000-0000-0000-000000000103"),
                        name="Suspended Market",
                        email="inactive@example.com",
                        status="inactive",
                        plan="starter",
                    ),
                    Tenant(
                        tenant_id=uuid.UUID("00000000-0000-0000-0000-000000000104"),
                        name="Paused Market",
                        email="paused@example.com",
                        status="active",
                        plan="starter",
                    ),
                    ConsolidationSettings(
                        tenant_id=uuid.UUID("00000000-0000-0000-0000-000000000104"),
                        mode="hybrid",
                        time_interval_hours=48,
                        order_quantity_threshold=50,
                        notify_threshold_percent=80,
                        is_active=False,
                    ),
                ]
            )
            await db.commit()

    asyncio.run(_seed())

    monkeypatch.setattr("core.config.get_settings", lambda: SimpleNamespace(database_url=db_url))

    dispatched_calls: list[tuple[str, dict]] = []

    def _capture_send_task(task_name: str, kwargs: dict):
        dispatched_calls.append((task_name, kwargs))
        return None

    monkeypatch.setattr("workers.scheduler.celery_app.send_task", _capture_send_task)

    result = dispatch_active_tenants.run(task_name="workers.consolidation.run_consolidation_cycle")
    assert result["status"] == "success"
    assert result["tenant_count"] == 2
    assert result["dispatched_count"] == 2

    task_names = {task for task, _ in dispatched_calls}
    assert task_names == {"workers.consolidation.run_consolidation_cycle"}
    tenant_ids = {kwargs["tenant_id"] for _, kwargs in dispatched_calls}
    assert tenant_ids == {
        "00000000-0000-0000-0000-000000000101",
        "00000000-0000-0000-0000-000000000102",
    }
    assert sorted(result["tenant_ids"]) == sorted(tenant_ids)

    dispatched_calls.clear()
    with_paused = dispatch_active_tenants.run(
        task_name="workers.consolidation.run_consolidation_cycle",
        task_kwargs={"source": "beat"},
        include_paused=True,
    )
    assert with_paused["tenant_count"] == 3
    assert "00000000-0000-0000-0000-000000000104" in {kwargs["tenant_id"] for _, kwargs in dispatched_calls}
    assert all(kwargs["source"] == "beat" for _, kwargs in dispatched_calls)

    asyncio.run(engine.dispose())


def test_dispatch_rejects_non_worker_task_names(monkeypatch):
    sent: list[str] = []
    monkeypatch.setattr("workers.scheduler.celery_app.send_task", lambda name, kwargs: sent.append(name))

    result = dispatch_active_tenants.run(task_name="os.system")

    assert result == {"status": "failed", "reason": "invalid_task_name", "task_name": "os.system"}
    assert sent == []
