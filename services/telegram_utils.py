"""
Утилиты для работы с Telegram API: экранирование Markdown, карточка заказа, безопасный edit_text.
"""
import asyncio
import logging
from typing import Optional

from aiogram.types import Message
from aiogram.exceptions import TelegramBadRequest, TelegramNetworkError, TelegramRetryAfter

logger = logging.getLogger(__name__)

# Сетевые ошибки, при которых имеет смысл повторить запрос
RETRYABLE_EXC = (TelegramNetworkError, TelegramRetryAfter)
MAX_EDIT_RETRIES = 3
RETRY_DELAY = 1.0


def escape_markdown(s: str) -> str:
    """
    Экранирует спецсимволы Markdown в пользовательском тексте.
    Использовать для всех полей из БД (имена, названия ресторанов, блюда, адреса).
    """
    if not s or not isinstance(s, str):
        return str(s) if s is not None else ""
    # Сначала обратный слеш, иначе двойное экранирование сломается
    s = s.replace("\\", "\\\\")
    for ch in "_*[]()`":
        s = s.replace(ch, f"\\{ch}")
    return s


def format_order_card(order, status_name: Optional[str] = None) -> str:
    """Карточка заказа для бота. order загружен со связями (restaurant, items, courier)."""
    lines = [f"🆔 *Заказ #{order.id}*"]
    if order.restaurant is not None:
        lines.append(f"🍽️ {escape_markdown(order.restaurant.name)}")
    lines.append(f"📋 Статус: {status_name or order.status.value}")
    for item in order.items:
        lines.append(f"• {escape_markdown(item.name)} × {item.quantity} — {item.price * item.quantity:g}")
    lines.append(f"💰 Итого: {order.total:g}")
    lines.append(f"📍 Адрес: {escape_markdown(order.address or 'не указан')}")
    if order.comment:
        lines.append(f"💬 {escape_markdown(order.comment)}")
    if order.courier is not None:
        lines.append(f"🚚 Курьер: {escape_markdown(order.courier.full_name)}")
    return "\n".join(lines)


async def safe_edit_text(
    message: Message,
    text: str,
    *,
    reply_markup=None,
    parse_mode: Optional[str] = "Markdown",
    **kwargs
) -> bool:
    """
    Безопасный edit_text: ловит TelegramBadRequest (message not modified, not found, parse error),
    при сетевых ошибках повторяет запрос до MAX_EDIT_RETRIES раз.
    Возвращает True при успехе, False при ожидаемых ошибках.
    """
    for attempt in range(MAX_EDIT_RETRIES):
        try:
            await message.edit_text(text, reply_markup=reply_markup, parse_mode=parse_mode, **kwargs)
            return True
        except RETRYABLE_EXC as e:
            if attempt == MAX_EDIT_RETRIES - 1:
                logger.error("safe_edit_text: failed after %s attempts: %s", MAX_EDIT_RETRIES, e)
                raise
            wait = getattr(e, "retry_after", None) or RETRY_DELAY
            logger.warning("safe_edit_text: %s, retry in %.1fs (attempt %s/%s)", e, wait, attempt + 1, MAX_EDIT_RETRIES)
            await asyncio.sleep(wait)
        except TelegramBadRequest as e:
            msg = str(e).lower()
            if "message is not modified" in msg or "message to edit not found" in msg:
                logger.debug("safe_edit_text: %s", e)
                return False
            if "can't parse entities" in msg or "can't find end of the entity" in msg:
                logger.warning("safe_edit_text: Markdown parse error, retrying without parse_mode: %s", e)
                try:
                    await message.edit_text(text, reply_markup=reply_markup, **kwargs)
                    return True
                except TelegramBadRequest as e2:
                    logger.warning("safe_edit_text: fallback failed: %s", e2)
                    return False
            raise
    return False
