import logging

from aiogram import Router, types, F
from sqlalchemy.ext.asyncio import AsyncSession

from config import config
from keyboards.order_kbs import get_orders_list_kb
from middlewares.auth_middleware import RoleRequiredMiddleware
from services.access import Identity
from services.order_service import OrderService
from services.telegram_utils import safe_edit_text

logger = logging.getLogger(__name__)
router = Router()
router.callback_query.middleware(RoleRequiredMiddleware())


@router.callback_query(F.data == "customer:orders")
async def my_orders(callback: types.CallbackQuery, session: AsyncSession, identity: Identity, order_service: OrderService):
    """Заказы клиента; отмена доступна из карточки, пока заказ не передан курьеру."""
    orders = await order_service.list_orders(session, identity, limit=config.ORDERS_PER_PAGE)
    text = "🧾 *Ваши заказы*" if orders else "🧾 У вас пока нет заказов."
    await safe_edit_text(callback.message, text, reply_markup=get_orders_list_kb(orders, "menu:main"))
    await callback.answer()
