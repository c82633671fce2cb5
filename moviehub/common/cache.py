import json
import logging
import time
from typing import Any, Callable

import redis

logger = logging.getLogger(__name__)


def build_cache_key(prefix: str, **parts: Any):
    """
    Build a cache key from a namespace and named query parts.

    Parts are serialized as JSON with sorted keys so two requests carrying the
    same parameters always map to the same key, whatever order they came in.

    Args:
        prefix (str): Cache namespace such as ``list`` or ``genres``.
        **parts: Named values forming the rest of the key.

    Returns:
        str: Cache key, e.g. ``list:{"genre": "Drama", ...}``.
    """
    if not parts:
        return prefix
    return f"{prefix}:{json.dumps(parts, sort_keys=True, default=str)}"


class MemoryCache:
    """In-process cache keeping JSON payloads with a per-key expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.entries: dict[str, tuple[str, float]] = {}

    def get(self, key: str):
        entry = self.entries.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if self.clock() >= expires_at:
            self.entries.pop(key, None)
            return None
        return json.loads(payload)

    def set(self, key: str, value: Any, ttl_ms: int):
        payload = json.dumps(value)
        self.entries[key] = (payload, self.clock() + ttl_ms / 1000)

    def __len__(self):
        return len(self.entries)


class RedisCache:
    """Redis-backed cache. Errors are logged and reported as misses."""

    def __init__(self, client: redis.Redis):
        self.client = client

    def get(self, key: str):
        try:
            cached = self.client.get(key)
        except redis.RedisError as exc:
            logger.warning("Redis get failed for %s: %s", key, exc)
            return None
        if not cached:
            return None
        try:
            return json.loads(cached)
        except (TypeError, ValueError):
            return None

    def set(self, key: str, value: Any, ttl_ms: int):
        seconds = max(1, int(ttl_ms // 1000))
        try:
            self.client.set(key, json.dumps(value), ex=seconds)
        except redis.RedisError as exc:
            logger.warning("Redis set failed for %s: %s", key, exc)


def build_cache(redis_url: str | None, timeout_seconds: int = 2, client_factory: Callable | None = None):
    """
    Select the cache backend for the lifetime of the process.

    Without a Redis URL the in-process cache is used silently. When Redis is
    configured but cannot be reached, the failure is logged and the
    in-process cache is used from then on; the connection is not retried.

    Args:
        redis_url (str | None): Redis connection string, e.g. ``redis://localhost:6379/0``.
        timeout_seconds (int): Connect and socket timeout for the Redis client.
        client_factory (Callable | None): Builds the client from the URL. Defaults to ``redis.Redis.from_url``.

    Returns:
        RedisCache | MemoryCache: Selected backend.
    """
    if not redis_url:
        return MemoryCache()

    factory = client_factory or redis.Redis.from_url
    try:
        client = factory(redis_url, socket_connect_timeout=timeout_seconds, socket_timeout=timeout_seconds)
        client.ping()
    except (redis.RedisError, ValueError, OSError) as exc:
        logger.warning("[Redis] unavailable (%s), falling back to memory cache.", exc)
        return MemoryCache()

    logger.info("[Redis] connected")
    return RedisCache(client)
