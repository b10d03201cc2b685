"""Redis store for deal caching and per-deal locks.

Handles:
- Caching deal documents as JSON with a TTL
- Short token-owned locks (serialize conditional status updates per deal)
- Incident fallback list when no durable tier is configured

TTL policies:
- Deal documents: DEAL_CACHE_TTL (default 7 days, deals outlive their expiry
  for the confirmation page and late ITNs)
- Deal locks: 5 seconds
"""

import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockNotOwnedError

from dealflow.domain import Deal, DealStatus, PaymentIncident
from dealflow.errors import StoreUnavailable
from dealflow.settings import get_settings

# TTL constants (in seconds)
TTL_DEAL_LOCK = 5
LOCK_WAIT = 1.0
LOCK_RETRY_INTERVAL = 0.05

# Key prefixes
PREFIX_DEAL = "deal:"
PREFIX_LOCK = "lock:"
KEY_INCIDENTS = "payment_incidents"

# Redis client (initialized on startup)
_redis: redis.Redis | None = None
logger = logging.getLogger("uvicorn.error")


async def init_redis() -> None:
    """Initialize Redis connection."""
    global _redis
    settings = get_settings()
    _redis = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    # Validate connectivity early (especially for `rediss://` in production).
    await _redis.ping()
    logger.info("Redis connected")


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def is_redis_ready() -> bool:
    return _redis is not None


def _get_redis() -> redis.Redis:
    """Get Redis client instance."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


# ============================================================
# Generic cache operations
# ============================================================


async def cache_get(key: str) -> str | None:
    """Get value from cache.

    Args:
        key: Cache key.

    Returns:
        Cached value or None if not found.
    """
    return await _get_redis().get(key)


async def cache_set(key: str, value: str, ttl: int) -> None:
    """Set value in cache with TTL.

    Args:
        key: Cache key.
        value: Value to cache.
        ttl: Time-to-live in seconds.
    """
    await _get_redis().setex(key, ttl, value)


async def cache_get_json(key: str) -> dict[str, Any] | None:
    """Get JSON value from cache."""
    value = await cache_get(key)
    if value:
        return json.loads(value)
    return None


async def cache_set_json(key: str, value: dict[str, Any], ttl: int) -> None:
    """Set JSON value in cache."""
    await cache_set(key, json.dumps(value), ttl)


# ============================================================
# Distributed locks
# ============================================================


def deal_lock(key: str, ttl: int = TTL_DEAL_LOCK, wait: float = LOCK_WAIT) -> Lock:
    """Distributed lock owned by a random token.

    Release only deletes the key while it still holds this holder's token,
    so a holder whose TTL ran out cannot drop the next holder's lock.

    Args:
        key: Lock key (e.g., deal token).
        ttl: Lock timeout in seconds.
        wait: Seconds to keep retrying before giving up.
    """
    return _get_redis().lock(
        f"{PREFIX_LOCK}{key}",
        timeout=ttl,
        blocking_timeout=wait,
        sleep=LOCK_RETRY_INTERVAL,
    )


# ============================================================
# Deal tier
# ============================================================


class RedisDealBackend:
    """Deal cache tier backed by Redis JSON documents."""

    name = "redis"

    def __init__(self, ttl: int | None = None, lock_wait: float = LOCK_WAIT) -> None:
        self.ttl = ttl or get_settings().deal_cache_ttl
        self.lock_wait = lock_wait

    async def insert(self, deal: Deal) -> bool:
        try:
            result = await _get_redis().set(
                f"{PREFIX_DEAL}{deal.token}",
                json.dumps(deal.to_dict()),
                nx=True,
                ex=self.ttl,
            )
        except (redis.RedisError, RuntimeError) as e:
            raise StoreUnavailable(str(e)) from e
        return result is not None

    async def fetch(self, token: str) -> Deal | None:
        try:
            payload = await cache_get_json(f"{PREFIX_DEAL}{token}")
        except (redis.RedisError, RuntimeError) as e:
            raise StoreUnavailable(str(e)) from e
        if not payload:
            return None
        try:
            return Deal.from_dict(payload)
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Discarding unreadable cached deal {token}")
            return None

    async def put(self, deal: Deal) -> None:
        try:
            await cache_set_json(f"{PREFIX_DEAL}{deal.token}", deal.to_dict(), self.ttl)
        except (redis.RedisError, RuntimeError) as e:
            raise StoreUnavailable(str(e)) from e

    async def compare_and_set(
        self,
        token: str,
        expected: frozenset[DealStatus],
        changes: dict[str, Any],
    ) -> Deal | None:
        try:
            lock = deal_lock(f"{PREFIX_DEAL}{token}", wait=self.lock_wait)
            if not await lock.acquire():
                raise StoreUnavailable(f"Deal {token} is locked")

            try:
                current = await self.fetch(token)
                if current is None or current.status not in expected:
                    return None
                updated = current.with_changes(changes)
                await self.put(updated)
                return updated
            finally:
                try:
                    await lock.release()
                except LockNotOwnedError:
                    logger.warning(f"Lock for deal {token} expired before release")
        except StoreUnavailable:
            raise
        except (redis.RedisError, RuntimeError) as e:
            raise StoreUnavailable(str(e)) from e

    async def add_incident(self, incident: PaymentIncident) -> None:
        payload = {
            "kind": incident.kind,
            "message": incident.message,
            "token": incident.token,
            "detail": incident.detail,
            "created_at": incident.created_at.isoformat(),
        }
        try:
            await _get_redis().lpush(KEY_INCIDENTS, json.dumps(payload, default=str))
        except (redis.RedisError, RuntimeError) as e:
            raise StoreUnavailable(str(e)) from e
