"""
Consolidation change feed over Redis pub/sub.

Events are invalidation signals carrying ids only; subscribers re-fetch the
authoritative state over HTTP. Publishing happens after the write commits
and a Redis failure never fails that write.
"""

import json
import uuid

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from core.config import get_settings

logger = structlog.get_logger()

EVENT_TYPES = ("po_updated", "orders_linked", "settings_updated")


def channel_for(tenant_id: uuid.UUID | str) -> str:
    return f"consolidation:{tenant_id}"


async def publish_event(tenant_id: uuid.UUID | str, event_type: str, payload: dict | None = None) -> int:
    """
    Publish one event. Returns the number of subscribers reached, 0 when
    disabled or when Redis is unavailable.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown consolidation event type '{event_type}'")

    settings = get_settings()
    if not settings.realtime_enabled:
        return 0

    message = json.dumps(
        {
            "type": event_type,
            "payload": {k: str(v) if isinstance(v, uuid.UUID) else v for k, v in (payload or {}).items()},
        }
    )
    redis = aioredis.from_url(settings.redis_url)
    try:
        return await redis.publish(channel_for(tenant_id), message)
    except (RedisError, OSError) as exc:
        logger.warning(
            "realtime.publish_failed",
            tenant_id=str(tenant_id),
            event_type=event_type,
            error=str(exc),
        )
        return 0
    finally:
        await redis.aclose()
