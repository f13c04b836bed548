from __future__ import annotations

import asyncio
import hashlib
import json
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from redis.asyncio import Redis, ConnectionPool
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError

import structlog
from endpoint_cache.clock import Clock, SystemClock, as_utc
from endpoint_cache.config import settings
from endpoint_cache.exceptions import CacheError, CacheReadError, CacheWriteError
from endpoint_cache.schemas import CachedResponse
from endpoint_cache.storage import CacheBackend

log = structlog.get_logger(__name__)


# ── Key derivation ────────────────────────────────────────────────────────────
#
# Only the caller's override params feed the key, never the endpoint's stored
# defaults. Editing an endpoint's defaults therefore keeps serving rows cached
# under the old defaults until they expire or the endpoint cache is cleared.

def canonical_params(params: Optional[Mapping[str, Any]]) -> str:
    return json.dumps(
        dict(params or {}),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def derive_key(
    endpoint_id: int,
    params: Optional[Mapping[str, Any]] = None,
    prefix: str = settings.CACHE_KEY_PREFIX,
) -> str:
    digest = hashlib.sha256(canonical_params(params).encode()).hexdigest()
    return f"{prefix}_{endpoint_id}_{digest}"


# ── Response cache ────────────────────────────────────────────────────────────

class ResponseCache:
    """
    TTL-stamped response rows on top of a backend (SQL storage or Redis).

    Backend failures are re-raised as CacheReadError / CacheWriteError so the
    fetch service can log them and fall through to a live call.
    """

    def __init__(self, backend: CacheBackend, clock: Clock | None = None):
        self._backend = backend
        self._clock = clock or SystemClock()
        self._stats_lock = asyncio.Lock()
        self._stats = {"hits": 0, "misses": 0, "errors": 0}

    async def get(self, key: str) -> Optional[CachedResponse]:
        now = self._clock.now()
        try:
            row = await self._backend.get_cache(key, now)
        except Exception as exc:
            await self._record("errors")
            raise CacheReadError(f"Cache read failed for {key}", {"key": key}) from exc

        # Lazy expiry: ignore stale rows whether or not the backend filtered them
        if row is None or as_utc(row.expires_at) <= now:
            await self._record("misses")
            return None
        await self._record("hits")
        return row

    async def put(self, endpoint_id: int, key: str, payload: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        now = self._clock.now()
        try:
            await self._backend.put_cache(
                endpoint_id, key, payload, now, now + timedelta(seconds=ttl_seconds)
            )
        except Exception as exc:
            await self._record("errors")
            raise CacheWriteError(f"Cache write failed for {key}", {"key": key}) from exc

    async def sweep_expired(self) -> None:
        deleted = await self._backend.delete_expired_cache(self._clock.now())
        log.info("cache.swept", deleted=deleted)

    async def clear(self, endpoint_id: Optional[int] = None) -> None:
        deleted = await self._backend.delete_cache(endpoint_id)
        log.info("cache.cleared", endpoint_id=endpoint_id, deleted=deleted)

    async def _record(self, counter: str) -> None:
        async with self._stats_lock:
            self._stats[counter] += 1

    async def stats(self) -> dict:
        async with self._stats_lock:
            total = self._stats["hits"] + self._stats["misses"]
            hit_rate = round(self._stats["hits"] / total, 4) if total else 0.0
            return {**self._stats, "total_requests": total, "hit_rate": hit_rate}


# ── Redis pool lifecycle ──────────────────────────────────────────────────────

def create_redis_pool() -> ConnectionPool:
    pool = ConnectionPool.from_url(
        settings.REDIS_URL,
        max_connections=settings.REDIS_POOL_SIZE,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_CONNECT_TIMEOUT,
        decode_responses=True,
        retry=Retry(ExponentialBackoff(), retries=3),
        retry_on_error=[RedisError],
    )
    log.info("redis.pool.initialized", pool_size=settings.REDIS_POOL_SIZE)
    return pool


async def close_redis_pool(pool: Optional[ConnectionPool]) -> None:
    if pool:
        await pool.aclose()
        log.info("redis.pool.closed")


async def ping_redis(redis: Redis) -> bool:
    try:
        return await redis.ping()
    except (RedisError, OSError):
        return False


# ── Redis backend ─────────────────────────────────────────────────────────────
#
# One Redis key per cache key, holding the serialized row. Redis' own TTL
# removes expired rows, so sweeping has nothing to do.

class RedisCacheBackend:
    def __init__(self, redis: Redis, namespace: str = settings.REDIS_NAMESPACE):
        self._redis = redis
        self._namespace = namespace

    def _key(self, cache_key: str) -> str:
        return f"{self._namespace}:{cache_key}"

    async def get_cache(self, cache_key: str, now: datetime) -> Optional[CachedResponse]:
        raw = await self._redis.get(self._key(cache_key))
        if raw is None:
            return None
        row = CachedResponse.model_validate_json(raw)
        return row if as_utc(row.expires_at) > now else None

    async def put_cache(
        self,
        endpoint_id: int,
        cache_key: str,
        data: Any,
        created_at: datetime,
        expires_at: datetime,
    ) -> None:
        row = CachedResponse(
            endpoint_id=endpoint_id,
            cache_key=cache_key,
            data=data,
            created_at=created_at,
            expires_at=expires_at,
        )
        ttl_ms = max(1, int((expires_at - created_at).total_seconds() * 1000))
        await self._redis.set(self._key(cache_key), row.model_dump_json(), px=ttl_ms)

    async def delete_expired_cache(self, now: datetime) -> int:
        return 0

    async def delete_cache(self, endpoint_id: Optional[int] = None) -> int:
        """SCAN instead of KEYS to avoid blocking Redis."""
        if endpoint_id is None:
            pattern = f"{self._namespace}:*"
        else:
            pattern = f"{self._namespace}:{settings.CACHE_KEY_PREFIX}_{endpoint_id}_*"
        try:
            deleted = 0
            async for key in self._redis.scan_iter(match=pattern, count=100):
                deleted += await self._redis.delete(key)
            return deleted
        except RedisError as e:
            raise CacheError(f"Cache delete failed for {pattern}", {"pattern": pattern}) from e
