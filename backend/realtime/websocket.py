"""
WebSocket endpoint relaying consolidation events (Redis pub/sub pattern).
"""

import asyncio

import redis.asyncio as aioredis
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from jose import JWTError, jwt

from api.deps import DEV_TENANT_ID
from core.config import get_settings
from realtime.publisher import channel_for

settings = get_settings()
router = APIRouter()

HEARTBEAT_SECONDS = 30


async def authenticate_ws(token: str) -> dict | None:
    """Validate JWT token from WebSocket query param."""
    if settings.debug:
        return {"sub": "dev-user", "tenant_id": DEV_TENANT_ID}
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


@router.websocket("/ws/consolidation")
async def websocket_consolidation(websocket: WebSocket, token: str = Query(...)):
    """
    Stream consolidation change events for the caller's tenant.

    Connect: ws://host/ws/consolidation?token=<jwt>

    Messages sent to client:
        {"type": "po_updated", "payload": {"po_id": ...}}
        {"type": "orders_linked", "payload": {"po_id": ..., "linked_count": ...}}
        {"type": "settings_updated", "payload": {}}
        {"type": "heartbeat", "payload": {}}
    """
    user = await authenticate_ws(token)
    if user is None or not user.get("tenant_id"):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    await websocket.accept()

    channel = channel_for(user["tenant_id"])
    redis = aioredis.from_url(settings.redis_url)
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)

    try:

        async def listen_redis():
            async for message in pubsub.listen():
                if message["type"] == "message":
                    try:
                        await websocket.send_text(message["data"].decode())
                    except (WebSocketDisconnect, RuntimeError):
                        break

        async def send_heartbeat():
            while True:
                await asyncio.sleep(HEARTBEAT_SECONDS)
                try:
                    await websocket.send_json({"type": "heartbeat", "payload": {}})
                except (WebSocketDisconnect, RuntimeError):
                    break

        await asyncio.gather(listen_redis(), send_heartbeat())

    except WebSocketDisconnect:
        pass
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
        await redis.aclose()
