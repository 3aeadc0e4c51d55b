"""
Общие действия с заказом для всех ролей: карточка и кнопки переходов.

Кнопки строятся из available_transitions, но права всё равно проверяет
OrderService: сообщение могло устареть, роль могла смениться.
"""
import logging

from aiogram import Router, types, F
from aiogram.filters import Command, CommandObject
from sqlalchemy.ext.asyncio import AsyncSession

from keyboards.order_kbs import get_order_card_kb, parse_transition_callback
from middlewares.auth_middleware import RoleRequiredMiddleware
from services.access import Identity
from services.order_service import OrderService
from services.order_state import STATUS_NAMES
from services.telegram_utils import format_order_card, safe_edit_text
from services.validation import OrderIdInput, validate_input

logger = logging.getLogger(__name__)
router = Router()
router.message.middleware(RoleRequiredMiddleware())
router.callback_query.middleware(RoleRequiredMiddleware())


async def show_order_card(callback: types.CallbackQuery, order, identity: Identity) -> None:
    text = format_order_card(order, STATUS_NAMES.get(order.status))
    kb = get_order_card_kb(order, identity.role, back_callback="menu:main")
    await safe_edit_text(callback.message, text, reply_markup=kb)


@router.callback_query(F.data.startswith("order_card:"))
async def order_card(callback: types.CallbackQuery, session: AsyncSession, identity: Identity, order_service: OrderService):
    try:
        order_id = int(callback.data.split(":")[1])
    except (ValueError, IndexError):
        await callback.answer("Ошибка", show_alert=True)
        return
    order = await order_service.get_order(session, order_id, identity)
    await show_order_card(callback, order, identity)
    await callback.answer()


@router.callback_query(F.data.startswith("order:"))
async def order_transition(callback: types.CallbackQuery, session: AsyncSession, identity: Identity, order_service: OrderService):
    try:
        target, order_id = parse_transition_callback(callback.data)
    except ValueError:
        await callback.answer("Ошибка", show_alert=True)
        return

    # MarketplaceError отсюда превращает LoggingMiddleware в alert
    order = await order_service.transition_order(session, order_id, target, identity)
    await show_order_card(callback, order, identity)
    await callback.answer(f"Статус: {STATUS_NAMES.get(order.status)}")


@router.message(Command("order"))
async def cmd_order(message: types.Message, command: CommandObject, session: AsyncSession, identity: Identity, order_service: OrderService):
    """/order 123 — открыть карточку заказа по номеру."""
    try:
        parsed = validate_input(OrderIdInput, command.args or "", "Укажите номер заказа: /order 123")
    except ValueError as e:
        await message.answer(f"❌ {e}")
        return
    order = await order_service.get_order(session, parsed.order_id, identity)
    text = format_order_card(order, STATUS_NAMES.get(order.status))
    await message.answer(text, parse_mode="Markdown", reply_markup=get_order_card_kb(order, identity.role, back_callback="menu:main"))
