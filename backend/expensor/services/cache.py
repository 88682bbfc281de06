"""Lightweight Redis cache utilities.

Usage guidelines:
- Always namespace keys with the Telegram id of the user they belong to.
- Invalidate on mutations (receipt create/update, category add).
- A Redis outage is a cache miss, never an error.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from redis import asyncio as aioredis

from expensor.core.config import settings

logger = logging.getLogger(__name__)

_redis_client = None
_lock = asyncio.Lock()


async def get_redis():
    """Return a singleton async Redis client or None if caching is disabled."""
    global _redis_client
    if not settings.CACHE_ENABLED:
        return None
    if _redis_client is not None:
        return _redis_client
    async with _lock:
        if _redis_client is not None:
            return _redis_client
        try:
            _redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        except Exception as e:  # pragma: no cover
            logger.warning("Redis unavailable: %s", e)
            _redis_client = None
    return _redis_client


async def cache_get_json(key: str) -> Optional[Any]:
    client = await get_redis()
    if not client:
        return None
    try:
        raw = await client.get(key)
        if raw is None:
            return None
        return json.loads(raw)
    except Exception as e:
        logger.debug("Cache get failed for %s: %s", key, e)
        return None


async def cache_set_json(key: str, value: Any, ttl: int) -> None:
    client = await get_redis()
    if not client:
        return
    try:
        await client.set(key, json.dumps(value), ex=ttl)
    except Exception as e:
        logger.debug("Cache set failed for %s: %s", key, e)


async def cache_delete(key: str) -> None:
    client = await get_redis()
    if not client:
        return
    try:
        await client.delete(key)
    except Exception as e:
        logger.debug("Cache delete failed for %s: %s", key, e)


def filter_options_cache_key(telegram_id: int) -> str:
    return f"receipts:filter-options:{telegram_id}"


async def invalidate_filter_options(telegram_id: int) -> None:
    await cache_delete(filter_options_cache_key(telegram_id))
