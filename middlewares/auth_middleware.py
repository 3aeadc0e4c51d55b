"""
Authentication and authorization middleware for role-based access control.
"""
import logging
from typing import Callable, Dict, Any, Awaitable, Iterable, Optional

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import UserRole
from services.access import resolve_identity
from services.errors import Unauthenticated

logger = logging.getLogger(__name__)


def event_user_id(event: TelegramObject) -> Optional[int]:
    if isinstance(event, (Message, CallbackQuery)) and event.from_user:
        return event.from_user.id
    return None


async def reply_error(event: TelegramObject, text: str) -> None:
    """Короткий ответ пользователю: alert для callback, сообщение для message."""
    if isinstance(event, CallbackQuery):
        await event.answer(text, show_alert=True)
    elif isinstance(event, Message):
        await event.answer(text)


class RoleRequiredMiddleware(BaseMiddleware):
    """
    Определяет Identity пользователя и кладёт её в data['identity'].

    roles — допустимые роли для роутера; None — любой активный пользователь.
    Супер-админ проходит всегда.
    """

    def __init__(self, roles: Optional[Iterable[UserRole]] = None):
        self.roles = frozenset(roles) if roles else None

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        # Сессия должна быть добавлена DatabaseMiddleware
        session: AsyncSession = data.get("session")
        if session is None:
            logger.error("Session not found in data. DatabaseMiddleware must be registered.")
            return

        try:
            identity = await resolve_identity(session, event_user_id(event))
        except Unauthenticated:
            await reply_error(event, "❌ Вы не зарегистрированы или аккаунт отключён. Нажмите /start")
            return

        if self.roles and identity.role != UserRole.SUPER_ADMIN and identity.role not in self.roles:
            logger.warning(
                "User %s (role: %s) attempted to access %s",
                identity.telegram_id, identity.role.value, sorted(r.value for r in self.roles),
            )
            await reply_error(event, "❌ Доступ запрещен.")
            return

        data["identity"] = identity
        return await handler(event, data)
