"""
Shoot events on Redis Streams (optional, degrades gracefully if unavailable).

Every condition transition and cleanup step is appended to a per-shoot
stream and mirrored on a global pub/sub channel for dashboards. An
unreachable Redis is not asked again before RECONNECT_INTERVAL passed.
"""
import json
import logging
import time
from datetime import datetime, timezone
from typing import Optional

import redis
import redis.asyncio as aioredis

from shoot_operator.config import settings

logger = logging.getLogger("shoot-operator")

STREAM_MAXLEN = 100
CHANNEL = "shoot:events"
RECONNECT_INTERVAL = 60.0

_redis_client: Optional[aioredis.Redis] = None
_retry_at = 0.0


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


async def _get_redis() -> Optional[aioredis.Redis]:
    """Lazy-init Redis client. Returns None if unavailable."""
    global _redis_client, _retry_at
    if _redis_client is not None:
        return _redis_client
    if not settings.REDIS_URL or time.monotonic() < _retry_at:
        return None
    client = aioredis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await client.ping()
    except redis.RedisError as e:
        logger.warning(f"Redis unavailable (non-fatal), retrying in {RECONNECT_INTERVAL:.0f}s: {e}")
        _retry_at = time.monotonic() + RECONNECT_INTERVAL
        await client.aclose()
        return None
    logger.info(f"Redis connected: {settings.REDIS_URL}")
    _redis_client = client
    return _redis_client


async def publish_event(shoot: str, event_type: str, message: str, status: str = ""):
    """Publish a shoot event to its Redis Stream and the global channel."""
    r = await _get_redis()
    if not r:
        return
    event = {
        "shoot": shoot,
        "type": event_type,
        "message": message,
        "status": status,
        "timestamp": _now(),
    }
    try:
        await r.xadd(f"shoot:events:{shoot}", event, maxlen=STREAM_MAXLEN)
        await r.publish(CHANNEL, json.dumps(event))
    except redis.RedisError as e:
        logger.debug(f"Redis publish failed (non-fatal): {e}")
