"""
Rate limiting middleware с поддержкой Redis для multi-instance окружений.
"""
import logging
import time
from collections import defaultdict
from typing import Callable, Dict, Any, Awaitable

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from middlewares.auth_middleware import event_user_id, reply_error

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = "⚠️ Слишком много запросов. Подождите немного."


class _RateLimitMiddleware(BaseMiddleware):
    def __init__(self, max_calls: int = 10, period: float = 60.0):
        self.max_calls = max_calls
        self.period = period

    async def allow(self, user_id: int) -> bool:
        raise NotImplementedError

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        user_id = event_user_id(event)
        if user_id and not await self.allow(user_id):
            logger.info("Rate limit exceeded for user %s", user_id)
            await reply_error(event, TOO_MANY_REQUESTS)
            return
        return await handler(event, data)


class RedisRateLimitMiddleware(_RateLimitMiddleware):
    """Ограничение количества запросов через Redis (INCR + EXPIRE)."""

    def __init__(self, redis_client, max_calls: int = 10, period: float = 60.0, key_prefix: str = "rate_limit:"):
        super().__init__(max_calls, period)
        self.redis = redis_client
        self.key_prefix = key_prefix

    async def allow(self, user_id: int) -> bool:
        key = f"{self.key_prefix}{user_id}"
        try:
            current = await self.redis.incr(key)
            if current == 1:
                await self.redis.expire(key, int(self.period))
        except Exception as e:
            # Redis недоступен: не блокируем пользователя
            logger.warning("Rate limit error for user %s: %s", user_id, e)
            return True
        return current <= self.max_calls


class MemoryRateLimitMiddleware(_RateLimitMiddleware):
    """In-memory rate limiting (один процесс)."""

    def __init__(self, max_calls: int = 10, period: float = 60.0):
        super().__init__(max_calls, period)
        self.calls: dict[int, list[float]] = defaultdict(list)

    async def allow(self, user_id: int) -> bool:
        now = time.monotonic()
        user_calls = self.calls[user_id]
        user_calls[:] = [t for t in user_calls if now - t < self.period]
        if len(user_calls) >= self.max_calls:
            return False
        user_calls.append(now)
        return True


async def create_rate_limit_middleware(
    redis_client=None,
    max_calls: int = 10,
    period: float = 60.0
) -> _RateLimitMiddleware:
    """Redis, если доступен, иначе память."""
    if redis_client:
        try:
            await redis_client.ping()
            return RedisRateLimitMiddleware(redis_client, max_calls, period)
        except Exception as e:
            logger.warning("Redis not available for rate limiting, using memory: %s", e)
    return MemoryRateLimitMiddleware(max_calls, period)
