"""
Обработчик необработанных обновлений.
Подключается последним — ловит сообщения и callback, которые не попали в другие хендлеры.
"""
import logging
from aiogram import Router, types
from aiogram.exceptions import TelegramBadRequest

logger = logging.getLogger(__name__)
router = Router()


@router.message()
async def fallback_message(message: types.Message):
    await message.answer("Используйте /start для начала работы или меню ниже.")


@router.callback_query()
async def fallback_callback(callback: types.CallbackQuery):
    """Устаревшие кнопки и т.п."""
    try:
        await callback.answer("Действие устарело. Отправьте /start для обновления меню.")
    except TelegramBadRequest as e:
        # query is too old
        logger.debug("fallback_callback: %s", e)
