"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "siver_logistics",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.consolidation.*": {"queue": "consolidation"},
        "workers.scheduler.*": {"queue": "consolidation"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    # Fans out across active tenants via workers.scheduler.dispatch_active_tenants.
    beat_schedule={
        "consolidation-cycle": {
            "task": "workers.scheduler.dispatch_active_tenants",
            "schedule": crontab(minute=f"*/{settings.consolidation_check_minutes}"),
            "kwargs": {"task_name": "workers.consolidation.run_consolidation_cycle"},
            "options": {"queue": "consolidation"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"])
