"""
Панель персонала ресторана: списки заказов и назначение курьера.
Супер-админ видит заказы всех ресторанов.
"""
import logging

from aiogram import Router, types, F
from sqlalchemy.ext.asyncio import AsyncSession

from config import config
from database.models import OrderStatus, UserRole
from keyboards.order_kbs import get_orders_list_kb
from keyboards.restaurant_kbs import get_couriers_kb
from middlewares.auth_middleware import RoleRequiredMiddleware
from services import db_ops
from services.access import Action, Identity, Resource, authorize
from services.order_service import OrderService
from services.telegram_utils import safe_edit_text
from handlers.orders import show_order_card

logger = logging.getLogger(__name__)
router = Router()
router.callback_query.middleware(
    RoleRequiredMiddleware({UserRole.RESTAURANT_ADMIN, UserRole.CHEF, UserRole.SUPER_ADMIN})
)

# Архивные не показываем
FINISHED_STATUSES = (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


@router.callback_query(F.data.in_({"restaurant:active", "restaurant:finished"}))
async def restaurant_orders(callback: types.CallbackQuery, session: AsyncSession, identity: Identity, order_service: OrderService):
    active = callback.data == "restaurant:active"
    if active:
        orders = await order_service.list_orders(session, identity, active_only=True, limit=config.ORDERS_PER_PAGE)
        title = "📋 *Активные заказы*"
    else:
        orders = await order_service.list_orders(
            session, identity, statuses=FINISHED_STATUSES, limit=config.ORDERS_PER_PAGE,
        )
        title = "✅ *Завершённые заказы*"

    if not orders:
        await safe_edit_text(callback.message, f"{title}\n\nЗаказов нет.", reply_markup=get_orders_list_kb([], "menu:main"))
    else:
        await safe_edit_text(callback.message, title, reply_markup=get_orders_list_kb(orders, "menu:main"))
    await callback.answer()


@router.callback_query(F.data.startswith("restaurant:assign:"))
async def choose_courier(callback: types.CallbackQuery, session: AsyncSession, identity: Identity, order_service: OrderService):
    """Показать курьеров на смене для назначения."""
    try:
        order_id = int(callback.data.split(":")[2])
    except (ValueError, IndexError):
        await callback.answer("Ошибка", show_alert=True)
        return
    order = await order_service.get_order(session, order_id, identity)
    authorize(identity, Action.ASSIGN_COURIER, Resource.from_order(order))

    couriers = await db_ops.get_pool_couriers(session, order.restaurant_id)
    if not couriers:
        await callback.answer("Нет курьеров на смене", show_alert=True)
        return
    await safe_edit_text(
        callback.message,
        f"🚚 Выберите курьера для заказа #{order_id}:",
        reply_markup=get_couriers_kb(order_id, couriers),
    )
    await callback.answer()


@router.callback_query(F.data.startswith("restaurant:assign_to:"))
async def assign_courier(callback: types.CallbackQuery, session: AsyncSession, identity: Identity, order_service: OrderService):
    try:
        _, _, raw_order_id, raw_courier_id = callback.data.split(":")
        order_id, courier_id = int(raw_order_id), int(raw_courier_id)
    except ValueError:
        await callback.answer("Ошибка", show_alert=True)
        return
    order = await order_service.assign_courier(session, order_id, identity, courier_id=courier_id)
    await show_order_card(callback, order, identity)
    await callback.answer("Курьер назначен")
