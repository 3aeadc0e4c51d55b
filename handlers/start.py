import logging
from aiogram import Router, types, F
from aiogram.filters import CommandStart
from sqlalchemy.ext.asyncio import AsyncSession

from config import config
from database.models import User, UserRole
from keyboards.courier_kbs import get_courier_menu_kb
from keyboards.customer_kbs import get_customer_menu_kb
from keyboards.restaurant_kbs import get_restaurant_menu_kb
from services.cache import invalidate_user
from services.db_ops import create_user, get_or_create_customer, get_user_by_telegram_id
from services.telegram_utils import escape_markdown, safe_edit_text

logger = logging.getLogger(__name__)
router = Router()


def get_role_menu(user: User, role: UserRole):
    if role in (UserRole.SUPER_ADMIN, UserRole.RESTAURANT_ADMIN, UserRole.CHEF):
        return get_restaurant_menu_kb()
    if role == UserRole.COURIER:
        return get_courier_menu_kb(user.is_on_duty)
    return get_customer_menu_kb()


@router.message(CommandStart())
async def cmd_start(message: types.Message, session: AsyncSession):
    telegram_id = message.from_user.id
    full_name = message.from_user.full_name
    chat_id = message.chat.id

    # Telegram id из ADMIN_IDS: всегда супер-админ
    if telegram_id in config.ADMIN_IDS_LIST:
        user = await get_user_by_telegram_id(session, telegram_id)
        if user is None:
            user = await create_user(session, telegram_id, full_name, role=UserRole.SUPER_ADMIN, chat_id=chat_id)
        elif user.role != UserRole.SUPER_ADMIN or not user.is_active:
            user.role = UserRole.SUPER_ADMIN
            user.is_active = True
            await session.commit()
        await invalidate_user(telegram_id)
        role = UserRole.SUPER_ADMIN
    else:
        # Клиенты регистрируются сами; персонал и курьеров назначает супер-админ
        user = await get_or_create_customer(session, telegram_id, full_name, chat_id=chat_id)
        if not user.is_active:
            await message.answer("Ваш аккаунт отключён. Обратитесь в поддержку.")
            return
        role = user.role

    logger.info("User %s opened menu as %s", telegram_id, role.value)
    await message.answer(
        f"Добро пожаловать, {escape_markdown(user.full_name)}!\n\nВыберите действие:",
        reply_markup=get_role_menu(user, role),
        parse_mode="Markdown",
    )


@router.callback_query(F.data == "menu:main")
async def back_to_menu(callback: types.CallbackQuery, session: AsyncSession):
    user = await get_user_by_telegram_id(session, callback.from_user.id)
    if user is None or not user.is_active:
        await callback.answer("Отправьте /start", show_alert=True)
        return
    role = UserRole.SUPER_ADMIN if user.telegram_id in config.ADMIN_IDS_LIST else user.role
    await safe_edit_text(callback.message, "Выберите действие:", reply_markup=get_role_menu(user, role))
    await callback.answer()
