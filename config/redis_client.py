"""
config/redis_client.py
Async Redis client for the JWT deny-list, webhook idempotency,
rate limiting, and realtime pub/sub fan-out.
"""

import json
import logging
from typing import Optional

import redis.asyncio as aioredis

from config.settings import settings

logger = logging.getLogger(__name__)


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


# ── Realtime channels ─────────────────────────────────────────

def user_channel(user_id) -> str:
    return f"user:{user_id}"


def conversation_channel(conversation_id) -> str:
    return f"conversation:{conversation_id}"


async def publish_event(channel: str, event: str, payload: dict) -> bool:
    """
    Publish a realtime event. Best effort: returns False when Redis is
    unavailable instead of failing the caller.
    """
    if redis_client is None:
        logger.debug(f"Redis not initialized, dropping {event} on {channel}")
        return False
    message = json.dumps({"event": event, "data": payload}, default=str)
    try:
        await redis_client.publish(channel, message)
        return True
    except Exception as e:
        logger.warning(f"Realtime publish to {channel} failed: {e}")
        return False


# ── Cache Helpers ─────────────────────────────────────────────
class RedisCache:
    """Helper class for common Redis caching patterns."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        """Add JWT ID to deny list until it expires."""
        await self.client.setex(f"jwt_revoked:{jti}", ttl_seconds, "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1

    # ── Webhook Idempotency ───────────────────────────────────
    async def claim_webhook_event(self, event_id: str) -> bool:
        """
        Atomic SET NX on the provider event id.
        Returns True the first time an event is seen, False on re-delivery.
        """
        result = await self.client.set(
            f"webhook_event:{event_id}",
            "1",
            ex=settings.WEBHOOK_EVENT_TTL,
            nx=True,
        )
        return result is True

    async def release_webhook_event(self, event_id: str) -> None:
        """Forget an event so the provider's retry is processed again."""
        await self.client.delete(f"webhook_event:{event_id}")

    # ── Rate Limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Fixed window rate limiter.
        Returns True if request is allowed, False if rate limited.
        """
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds)
        results = await pipe.execute()
        current_count = results[0]
        return current_count <= limit
