"""
Middleware для логирования входящих событий и исключений.

- каждый апдейт (message/callback): кто отправил и что
- ошибки бизнес-логики (MarketplaceError) превращаются в короткий ответ пользователю
- всё остальное логируется с полным traceback и пробрасывается дальше
"""

import logging
import time
from typing import Callable, Dict, Any, Awaitable, Optional

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery

from middlewares.auth_middleware import event_user_id, reply_error
from services.errors import MarketplaceError

logger = logging.getLogger(__name__)


def _truncate(text: Optional[str], limit: int = 200) -> Optional[str]:
    if text is None:
        return None
    text = text.replace("\n", "\\n")
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class LoggingMiddleware(BaseMiddleware):
    """Логирует старт/финиш обработки события + исключения с контекстом."""

    def __init__(self, log_success: bool = True):
        self.log_success = log_success

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        started = time.monotonic()

        event_type = type(event).__name__
        user_id = event_user_id(event)
        payload = None
        if isinstance(event, Message):
            payload = _truncate(event.text or event.caption)
        elif isinstance(event, CallbackQuery):
            payload = _truncate(event.data)

        # Корреляционный ID на время обработки одного события
        trace_id = f"{int(time.time() * 1000)}:{user_id or 'na'}"
        data["trace_id"] = trace_id

        logger.info("IN  trace=%s type=%s user=%s payload=%s", trace_id, event_type, user_id, payload)

        try:
            result = await handler(event, data)
        except MarketplaceError as e:
            logger.info(
                "REJ trace=%s type=%s user=%s code=%s msg=%s",
                trace_id, event_type, user_id, e.code, e.message,
            )
            await reply_error(event, f"❌ {e.message}")
            return None
        except Exception as e:
            ms = (time.monotonic() - started) * 1000
            logger.error(
                "ERR trace=%s type=%s user=%s time_ms=%.1f err=%s",
                trace_id, event_type, user_id, ms, repr(e),
                exc_info=True,
            )
            raise

        if self.log_success:
            ms = (time.monotonic() - started) * 1000
            logger.info("OUT trace=%s type=%s user=%s time_ms=%.1f", trace_id, event_type, user_id, ms)
        return result
