import asyncio
import logging
import sys
import time
from logging.handlers import RotatingFileHandler

from aiogram import Bot, Dispatcher
from aiogram.exceptions import TelegramAPIError, TelegramNetworkError, TelegramServerError, TelegramRetryAfter
from aiogram.types import ErrorEvent

from config import config
from middlewares.db_middleware import DatabaseMiddleware
from middlewares.logging_middleware import LoggingMiddleware
from middlewares.rate_limit import create_rate_limit_middleware


def setup_logging() -> None:
    """Консоль + файл с ротацией. Уровень из LOG_LEVEL."""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            RotatingFileHandler(
                config.LOG_FILE,
                maxBytes=10*1024*1024,  # 10 MB
                backupCount=5,
                encoding='utf-8'
            )
        ]
    )


logger = logging.getLogger(__name__)


def setup_asyncio_exception_logging() -> None:
    """
    Ловит исключения из "фоновых" задач asyncio (Task exception was never retrieved),
    которые не проходят через aiogram handlers/errors.
    """
    loop = asyncio.get_running_loop()

    def _handler(loop: asyncio.AbstractEventLoop, context: dict):
        logger.error("ASYNCIO %s", context.get("message", "asyncio exception"), exc_info=context.get("exception"))

    loop.set_exception_handler(_handler)


async def wait_for_db(max_wait: float = 60.0, max_delay: float = 10.0) -> None:
    """Ждём БД при старте (PostgreSQL может ещё подниматься)."""
    from sqlalchemy import text
    from sqlalchemy.exc import OperationalError
    from database.core import engine

    deadline = time.monotonic() + max_wait
    attempt = 0
    while True:
        attempt += 1
        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("✅ Database connection successful")
            return
        except (OperationalError, ConnectionRefusedError, OSError) as e:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.error("❌ Database is not reachable: %s (dialect=%s)", e, config.DB_DIALECT)
                raise
            delay = min(max_delay, 2 ** min(attempt - 1, 6), max(1.0, remaining))
            logger.warning("DB not ready (attempt=%s). Retry in %.1fs. err=%r", attempt, delay, e)
            await asyncio.sleep(delay)


async def create_redis():
    """Redis для FSM, кеша прав, rate limit и in-app уведомлений. None, если недоступен."""
    import redis.asyncio as redis
    client = redis.Redis(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        db=config.REDIS_DB,
        password=config.REDIS_PASSWORD,
        decode_responses=False
    )
    try:
        await client.ping()
    except Exception as e:
        logger.warning("Redis not available: %s", e)
        await client.aclose()
        return None
    return client


async def ensure_sqlite_schema() -> None:
    # В режиме SQLite поднимаем таблицы автоматически; для Postgres: alembic
    if config.DB_DIALECT not in ("sqlite", "sqlite3"):
        return
    from database.core import Base, engine
    import database.models  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("SQLite mode: tables are ready")


def build_dispatcher(storage, order_service) -> Dispatcher:
    from handlers import start, orders, restaurant, courier, customer, fallback

    dp = Dispatcher(storage=storage)
    # Доступно в handlers как аргумент order_service
    dp["order_service"] = order_service

    # Логирование всех входящих событий + ошибки бизнес-логики в alert
    dp.message.middleware(LoggingMiddleware(log_success=True))
    dp.callback_query.middleware(LoggingMiddleware(log_success=True))
    dp.message.middleware(DatabaseMiddleware())
    dp.callback_query.middleware(DatabaseMiddleware())

    @dp.errors()
    async def global_error_handler(event: ErrorEvent):
        exc = event.exception
        logger.error(
            "UNHANDLED update_id=%s err=%r",
            getattr(event.update, "update_id", None), exc,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        try:
            if event.update.message:
                await event.update.message.answer("⚠️ Произошла внутренняя ошибка. Мы уже записали её в лог.")
            elif event.update.callback_query:
                await event.update.callback_query.answer("⚠️ Ошибка. Попробуйте ещё раз.", show_alert=True)
        except TelegramAPIError as e:
            logger.warning("Could not report error to user: %s", e)

    # fallback последним, ловит необработанные обновления
    dp.include_router(start.router)
    dp.include_router(orders.router)
    dp.include_router(restaurant.router)
    dp.include_router(courier.router)
    dp.include_router(customer.router)
    dp.include_router(fallback.router)
    return dp


async def main():
    setup_logging()
    logger.info("Starting bot...")
    setup_asyncio_exception_logging()
    logger.info("DB_DIALECT=%s", config.DB_DIALECT)

    bot = Bot(token=config.BOT_TOKEN)
    await wait_for_db()
    await ensure_sqlite_schema()

    redis_client = await create_redis()
    if redis_client is not None:
        from aiogram.fsm.storage.redis import RedisStorage
        storage = RedisStorage(redis=redis_client)
        logger.info("Using Redis storage for FSM")
    else:
        from aiogram.fsm.storage.memory import MemoryStorage
        storage = MemoryStorage()

    from services.cache import init_cache
    from services.notifications import NotificationDispatcher, NotificationSettings
    from services.order_service import OrderService

    await init_cache(redis_client)
    notifier = NotificationDispatcher(bot, NotificationSettings.from_config(config), redis_client)
    dp = build_dispatcher(storage, OrderService(notifier))

    # Rate limiting через Redis или Memory
    dp.message.middleware(await create_rate_limit_middleware(
        redis_client, config.RATE_LIMIT_MESSAGE_MAX, config.RATE_LIMIT_PERIOD,
    ))
    dp.callback_query.middleware(await create_rate_limit_middleware(
        redis_client, config.RATE_LIMIT_CALLBACK_MAX, config.RATE_LIMIT_PERIOD,
    ))

    try:
        await bot.delete_webhook(drop_pending_updates=True)
        logger.info("Bot started successfully")

        # Автоперезапуск polling при временных сетевых сбоях
        while True:
            try:
                await dp.start_polling(bot, allowed_updates=["message", "callback_query"])
                break  # нормальная остановка polling
            except TelegramRetryAfter as e:
                logger.warning("TelegramRetryAfter: wait %.1fs then continue", e.retry_after)
                await asyncio.sleep(e.retry_after)
            except (TelegramNetworkError, TelegramServerError, asyncio.TimeoutError, OSError):
                logger.error("Polling crashed (network/server). Restart in %.1fs", config.POLL_RESTART_SECONDS, exc_info=True)
                await asyncio.sleep(config.POLL_RESTART_SECONDS)
    finally:
        # Досылаем уведомления, которые ещё в полёте
        await notifier.drain()
        await bot.session.close()
        if redis_client is not None:
            await redis_client.aclose()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
