"""
Redis-backed cache for the admin and applicant dashboard views.

The cache never holds authoritative data: views are recomputed from the
database on a miss, and every status change invalidates the affected keys.
Redis failures are logged and treated as misses.
"""
import json
import uuid
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog

from origin_portal.config import get_settings

logger = structlog.get_logger(__name__)

ADMIN_DASHBOARD_KEY = "dashboard:admin"


def applicant_dashboard_key(user_id: uuid.UUID | str) -> str:
    return f"dashboard:applicant:{user_id}"


class DashboardCache:
    """
    Cache for computed dashboard views.

    Disabled (every lookup misses, invalidation is a no-op) when neither a
    Redis client nor a Redis URL is available.
    """

    def __init__(self, redis_client: Optional[aioredis.Redis] = None):
        """
        Initialize dashboard cache.

        Args:
            redis_client: Optional Redis client (created from settings if not provided)
        """
        self.settings = get_settings()
        self.redis_client = redis_client
        self.enabled = redis_client is not None or bool(self.settings.redis_url)

    def _ensure_redis(self) -> aioredis.Redis:
        """Ensure Redis client is initialized."""
        if self.redis_client is None:
            self.redis_client = aioredis.from_url(
                self.settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self.redis_client

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        if not self.enabled:
            return None
        try:
            cached = await self._ensure_redis().get(key)
        except Exception as e:
            logger.warning("dashboard_cache_get_error", key=key, error=str(e))
            return None
        return json.loads(cached) if cached else None

    async def set(self, key: str, view: Dict[str, Any]) -> None:
        if not self.enabled:
            return
        try:
            await self._ensure_redis().setex(
                key, self.settings.dashboard_cache_ttl, json.dumps(view, default=str)
            )
        except Exception as e:
            logger.warning("dashboard_cache_set_error", key=key, error=str(e))

    async def invalidate(self, *keys: str) -> None:
        if not self.enabled or not keys:
            return
        try:
            await self._ensure_redis().delete(*keys)
            logger.info("dashboard_cache_invalidated", keys=list(keys))
        except Exception as e:
            logger.warning("dashboard_cache_invalidate_error", keys=list(keys), error=str(e))

    async def invalidate_admin(self) -> None:
        await self.invalidate(ADMIN_DASHBOARD_KEY)

    async def invalidate_applicant(self, user_id: uuid.UUID | str) -> None:
        await self.invalidate(applicant_dashboard_key(user_id))

    async def invalidate_for(self, user_id: uuid.UUID | str) -> None:
        """Invalidate the admin view and one applicant's view."""
        await self.invalidate(ADMIN_DASHBOARD_KEY, applicant_dashboard_key(user_id))

    async def close(self) -> None:
        """Close Redis connection."""
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
