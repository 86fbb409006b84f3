"""Redis cache utility functions."""

from __future__ import annotations

import logging
import os

import redis

from . import settings

logger = logging.getLogger(__name__)

# Redis connection
_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis | None:
    """
    Get or create Redis client instance.

    Returns None if caching is disabled or the connection fails.
    """
    global _redis_client

    if not settings.CACHE_ENABLED:
        return None

    if _redis_client is not None:
        return _redis_client

    try:
        redis_url = os.getenv("REDIS_URL") or os.getenv("CELERY_BROKER_URL", "redis://cache:6379/0")
        client = redis.from_url(redis_url, decode_responses=True, socket_connect_timeout=2)
        # Test connection
        client.ping()
        logger.info("Redis cache connected successfully")
        _redis_client = client
        return _redis_client
    except Exception as e:
        logger.warning(f"Redis cache unavailable: {e}. Continuing without cache.")
        return None


def cache_get_int(key: str) -> int | None:
    """
    Retrieve a cached integer.

    Returns None on a miss, a non-integer value, or a Redis error.
    """
    client = get_redis_client()
    if not client:
        return None

    try:
        value = client.get(key)
        if value is None:
            return None
        return int(value)
    except (ValueError, TypeError):
        return None
    except Exception as e:
        logger.warning(f"Cache get error for key '{key}': {e}")
        return None


def cache_set_int(key: str, value: int, ttl: int = 7 * 24 * 60 * 60) -> bool:
    """Store an integer with a TTL (default 7 days)."""
    client = get_redis_client()
    if not client:
        return False

    try:
        client.setex(key, ttl, int(value))
        return True
    except Exception as e:
        logger.warning(f"Cache set error for key '{key}': {e}")
        return False


def cache_incr(key: str, amount: int = 1) -> None:
    """
    Increment a counter only if it is already cached.

    A missing key stays missing so the next read recounts from the database.
    """
    client = get_redis_client()
    if not client:
        return

    try:
        if client.exists(key):
            client.incrby(key, amount)
    except Exception as e:
        logger.warning(f"Cache incr error for key '{key}': {e}")


def cache_decr(key: str, amount: int = 1) -> None:
    """Decrement a cached counter, dropping the key if it would go negative."""
    client = get_redis_client()
    if not client:
        return

    try:
        if not client.exists(key):
            return
        remaining = client.decrby(key, amount)
        if remaining < 0:
            client.delete(key)
    except Exception as e:
        logger.warning(f"Cache decr error for key '{key}': {e}")
