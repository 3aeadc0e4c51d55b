"""
Кеширование прав пользователей (Identity) с использованием Redis для поддержки нескольких инстансов.

Кешируется Identity (dataclass), а НЕ ORM-объект User, чтобы избежать
DetachedInstanceError при обращении к relationship вне сессии.
"""
from __future__ import annotations

import asyncio
from typing import Optional
import json
import logging
from datetime import datetime, timedelta

from services.access import Identity
from config import config

logger = logging.getLogger(__name__)


class RedisUserCache:
    """Кеш Identity на Redis с TTL."""

    def __init__(self, redis_client, ttl_seconds: int = 300):
        self.redis = redis_client
        self.ttl = ttl_seconds
        self._prefix = "identity_cache:"

    def _key(self, telegram_id: int) -> str:
        return f"{self._prefix}{telegram_id}"

    async def get(self, telegram_id: int) -> Optional[Identity]:
        try:
            data = await self.redis.get(self._key(telegram_id))
            if data:
                return Identity.from_dict(json.loads(data))
        except Exception as e:
            logger.debug("Cache get error for user %s: %s", telegram_id, e)
        return None

    async def set(self, telegram_id: int, identity: Identity) -> None:
        try:
            await self.redis.setex(self._key(telegram_id), self.ttl, json.dumps(identity.to_dict()))
        except Exception as e:
            logger.warning("Cache set error for user %s: %s", telegram_id, e)

    async def invalidate(self, telegram_id: int) -> None:
        try:
            await self.redis.delete(self._key(telegram_id))
        except Exception as e:
            logger.debug("Cache invalidate error for user %s: %s", telegram_id, e)


class MemoryUserCache:
    """In-memory кеш (fallback если Redis недоступен)."""

    def __init__(self, ttl_seconds: int = 300):
        self._cache: dict[int, tuple[Identity, datetime]] = {}
        self._ttl = timedelta(seconds=ttl_seconds)
        self._lock = asyncio.Lock()

    async def get(self, telegram_id: int) -> Optional[Identity]:
        async with self._lock:
            if telegram_id in self._cache:
                cached, expiry = self._cache[telegram_id]
                if datetime.now() < expiry:
                    return cached
                del self._cache[telegram_id]
        return None

    async def set(self, telegram_id: int, identity: Identity) -> None:
        async with self._lock:
            self._cache[telegram_id] = (identity, datetime.now() + self._ttl)

    async def invalidate(self, telegram_id: int) -> None:
        async with self._lock:
            self._cache.pop(telegram_id, None)


# Глобальный экземпляр кеша (инициализируется в main.py / api.py)
user_cache: Optional[RedisUserCache | MemoryUserCache] = None


async def init_cache(redis_client=None) -> RedisUserCache | MemoryUserCache:
    """Инициализировать кеш прав пользователей."""
    global user_cache
    if redis_client:
        try:
            await redis_client.ping()
            user_cache = RedisUserCache(redis_client, ttl_seconds=config.REDIS_CACHE_TTL)
            logger.info("Using Redis cache for identities")
            return user_cache
        except Exception as e:
            logger.warning("Redis not available for cache, using memory: %s", e)

    user_cache = MemoryUserCache(ttl_seconds=config.REDIS_CACHE_TTL)
    logger.info("Using memory cache for identities")
    return user_cache


async def invalidate_user(telegram_id: int) -> None:
    """Сбросить кеш после смены роли/привязок пользователя."""
    if user_cache is not None:
        await user_cache.invalidate(telegram_id)
