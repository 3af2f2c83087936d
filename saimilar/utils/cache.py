"""Redis caching for TMDB lookups and generated summaries.

The cache is optional: when Redis cannot be reached every operation becomes a
no-op and callers fall through to the live API.
"""

import hashlib
import json
from collections.abc import Callable
from datetime import timedelta
from functools import wraps
from typing import Any, TypeVar

import redis.asyncio as redis
from pydantic import BaseModel, ValidationError

from saimilar.config import get_settings
from saimilar.utils.logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])
M = TypeVar("M", bound=BaseModel)

CACHE_TTL_KEYWORDS = timedelta(hours=24)  # TMDB keyword id lookups
CACHE_TTL_DETAILS = timedelta(hours=6)    # Movie / TV details
CACHE_TTL_SUMMARY = timedelta(days=3)     # Spoiler-free summaries

MAX_KEY_LENGTH = 200


def _encode(value: Any) -> str:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    return json.dumps(value, default=str, ensure_ascii=False)


class RedisCache:
    """JSON cache over ``redis.asyncio``; pydantic models are stored as their JSON dump."""

    def __init__(self, url: str | None = None) -> None:
        self.url = url
        self._client: redis.Redis | None = None
        self._connected = False

    def _redis(self) -> redis.Redis:
        if self._client is None:
            url = self.url or str(get_settings().redis_url)
            self._client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        return self._client

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        """Ping Redis once; on failure the cache stays disabled."""
        try:
            await self._redis().ping()
        except Exception as e:
            logger.warning(f"Redis cache unavailable: {e}")
            self._connected = False
        else:
            self._connected = True
        return self._connected

    async def ping(self) -> bool:
        return await self._redis().ping()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        self._client = None
        self._connected = False

    async def get(self, key: str) -> Any | None:
        """Decoded JSON value, or None when missing, expired or Redis is down."""
        if not self._connected:
            return None
        try:
            raw = await self._redis().get(key)
        except Exception as e:
            logger.debug(f"Cache get error for {key}: {e}")
            return None
        return json.loads(raw) if raw else None

    async def get_model(self, key: str, model: type[M]) -> M | None:
        """Cached value validated as ``model``; malformed entries count as misses."""
        data = await self.get(key)
        if data is None:
            return None
        try:
            return model.model_validate(data)
        except ValidationError:
            logger.debug(f"Discarding malformed cache entry {key}")
            return None

    async def set(self, key: str, value: Any, ttl: timedelta = CACHE_TTL_DETAILS) -> bool:
        if not self._connected:
            return False
        try:
            await self._redis().setex(key, int(ttl.total_seconds()), _encode(value))
        except Exception as e:
            logger.debug(f"Cache set error for {key}: {e}")
            return False
        return True


cache = RedisCache()


def make_cache_key(namespace: str, *args: Any, **kwargs: Any) -> str:
    """Build a readable cache key, hashing it when it grows too long.

    Example: make_cache_key("tmdb:details", 603, "movie", language="en-US")
    -> "tmdb:details:603:movie:language=en-US"
    """
    parts = [namespace]
    parts.extend(str(arg) for arg in args if arg is not None)
    parts.extend(f"{key}={value}" for key, value in sorted(kwargs.items()) if value is not None)

    key = ":".join(parts)
    if len(key) > MAX_KEY_LENGTH:
        key = f"{namespace}:{hashlib.md5(key.encode()).hexdigest()[:12]}"
    return key


def cached(namespace: str, ttl: timedelta = CACHE_TTL_DETAILS) -> Callable[[F], F]:
    """Cache the JSON result of an async method in Redis.

    ``self`` is left out of the key. ``None`` results are never cached, so a
    failed TMDB call is retried on the next lookup.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            key = make_cache_key(namespace, *args[1:], **kwargs)

            hit = await cache.get(key)
            if hit is not None:
                logger.debug(f"Cache HIT: {key}")
                return hit

            result = await func(*args, **kwargs)
            if result is not None:
                await cache.set(key, result, ttl)
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
