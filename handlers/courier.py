import logging

from aiogram import Router, types, F
from aiogram.fsm.context import FSMContext
from aiogram.types import ReplyKeyboardRemove
from sqlalchemy.ext.asyncio import AsyncSession

from config import config
from database.models import UserRole
from keyboards.courier_kbs import get_courier_menu_kb, get_courier_reply_kb
from keyboards.order_kbs import get_orders_list_kb
from middlewares.auth_middleware import RoleRequiredMiddleware
from services import db_ops
from services.access import Identity
from services.order_service import OrderService
from services.telegram_utils import safe_edit_text
from states.courier_states import CourierState
from handlers.orders import show_order_card

logger = logging.getLogger(__name__)
router = Router()
router.callback_query.middleware(RoleRequiredMiddleware({UserRole.COURIER}))
router.message.middleware(RoleRequiredMiddleware({UserRole.COURIER}))


@router.callback_query(F.data == "courier:duty")
async def toggle_duty(callback: types.CallbackQuery, session: AsyncSession, identity: Identity):
    """Начать/закончить смену. Предложения заказов приходят только курьерам на смене."""
    user = await db_ops.get_user_by_id(session, identity.user_id)
    user = await db_ops.set_courier_duty(session, user, not user.is_on_duty, chat_id=callback.message.chat.id)
    logger.info("Courier %s on_duty=%s", user.id, user.is_on_duty)

    text = "🟢 Вы на смене. Новые заказы будут приходить сюда." if user.is_on_duty else "🔴 Смена закончена."
    await safe_edit_text(callback.message, text, reply_markup=get_courier_menu_kb(user.is_on_duty))
    await callback.answer()


@router.callback_query(F.data == "courier:my_orders")
async def my_orders(callback: types.CallbackQuery, session: AsyncSession, identity: Identity, order_service: OrderService):
    orders = await order_service.list_orders(session, identity, active_only=True, limit=config.ORDERS_PER_PAGE)
    text = "📦 *Ваши заказы*" if orders else "📦 У вас нет активных заказов."
    await safe_edit_text(callback.message, text, reply_markup=get_orders_list_kb(orders, "menu:main"))
    await callback.answer()


@router.callback_query(F.data.startswith("courier:take:"))
async def take_order(callback: types.CallbackQuery, session: AsyncSession, identity: Identity, order_service: OrderService):
    """Кто первый возьмет — тот и везет."""
    try:
        order_id = int(callback.data.split(":")[2])
    except (ValueError, IndexError):
        await callback.answer("Ошибка", show_alert=True)
        return
    order = await order_service.assign_courier(session, order_id, identity)
    await show_order_card(callback, order, identity)
    await callback.answer("✅ Заказ ваш!")


@router.callback_query(F.data == "courier:location")
async def ask_location(callback: types.CallbackQuery, state: FSMContext):
    await state.set_state(CourierState.waiting_location)
    await callback.message.answer("Нажмите кнопку, чтобы отправить геолокацию:", reply_markup=get_courier_reply_kb())
    await callback.answer()


@router.message(CourierState.waiting_location, F.location)
async def save_location(message: types.Message, state: FSMContext, session: AsyncSession, identity: Identity):
    user = await db_ops.get_user_by_id(session, identity.user_id)
    await db_ops.update_courier_location(session, user, message.location.latitude, message.location.longitude)
    await state.clear()
    await message.answer("📍 Геолокация сохранена.", reply_markup=ReplyKeyboardRemove())
    await message.answer("Панель курьера:", reply_markup=get_courier_menu_kb(user.is_on_duty))


@router.message(CourierState.waiting_location)
async def location_expected(message: types.Message):
    await message.answer("Отправьте геолокацию кнопкой ниже.", reply_markup=get_courier_reply_kb())
