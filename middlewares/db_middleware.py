"""
Middleware для dependency injection сессий БД.
"""
import logging
from typing import Callable, Dict, Any, Awaitable

from aiogram import BaseMiddleware
from aiogram.exceptions import TelegramAPIError
from aiogram.types import TelegramObject
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import async_sessionmaker

from database.core import session_maker as default_session_maker
from middlewares.auth_middleware import reply_error

logger = logging.getLogger(__name__)


class DatabaseMiddleware(BaseMiddleware):
    """Одна сессия на апдейт: создаётся до handler'а и закрывается после."""

    def __init__(self, session_maker: async_sessionmaker = default_session_maker):
        self.session_maker = session_maker

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        try:
            async with self.session_maker() as session:
                data["session"] = session
                return await handler(event, data)
        except (OperationalError, ConnectionRefusedError) as e:
            logger.error("Database connection error: %s", e, exc_info=True)
            try:
                await reply_error(event, "❌ Ошибка подключения к базе данных. Попробуйте позже.")
            except TelegramAPIError as send_error:
                logger.warning("Could not report database error to user: %s", send_error)
            return
