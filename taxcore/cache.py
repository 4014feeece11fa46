"""
cache.py — Redis caching layer for calculation listings.

Namespace conventions:
  calculations:{scope}:{sha256(query)} → serialized CalculationPage   TTL settings.list_cache_ttl

  scope = the taxpayer's user id for non-elevated actors, "all" for elevated
  ones, so a taxpayer can never be served another scope's page.

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x)
  - Pool created once in lifespan, stored on app.state.redis (None = caching off)
  - Helper functions take the client as a param — no module-level global state
  - Any create/update/delete drops the whole calculations:* namespace; a page
    can include records of many users, so narrower invalidation would be wrong
  - Logs only key prefixes and counts — cached pages contain amounts
"""
import hashlib
import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis

from taxcore.config import settings

logger = logging.getLogger(__name__)

CALCULATIONS_PREFIX = "calculations"


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def make_list_key(scope: str, params: dict[str, Any]) -> str:
    """
    Build the cache key for one listing request.
    Params are JSON-encoded with sorted keys so equal queries hash equally.
    """
    canonical = json.dumps(params, sort_keys=True, default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{CALCULATIONS_PREFIX}:{scope}:{digest}"


# ---------------------------------------------------------------------------
# Pool factory — called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.
    Verifies connectivity with PING before returning.
    """
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    await client.ping()
    logger.info("Redis connection pool established at %s", settings.redis_url)
    return client


# ---------------------------------------------------------------------------
# Listing cache helpers
# ---------------------------------------------------------------------------

async def get_cached_page(client: aioredis.Redis, key: str) -> Optional[dict]:
    """Return the cached page dict, or None on a miss."""
    raw = await client.get(key)
    if raw is None:
        return None
    logger.debug("List cache hit prefix=%s", key.rsplit(":", 1)[0])
    return json.loads(raw)


async def set_cached_page(
    client: aioredis.Redis,
    key: str,
    page: dict,
    ttl: Optional[int] = None,
) -> None:
    """Store a JSON-ready page dict under key for ttl seconds (default settings.list_cache_ttl)."""
    ttl = settings.list_cache_ttl if ttl is None else ttl
    await client.setex(key, ttl, json.dumps(page))


async def invalidate_calculations(client: aioredis.Redis) -> int:
    """Delete every calculations:* entry. Returns the number of keys removed."""
    keys = [key async for key in client.scan_iter(match=f"{CALCULATIONS_PREFIX}:*")]
    if not keys:
        return 0
    removed = await client.delete(*keys)
    logger.info("List cache invalidated keys=%d", removed)
    return removed
