from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton

from database.models import OrderStatus, UserRole
from keyboards.restaurant_kbs import get_assign_courier_button
from services.order_state import ASSIGNABLE_STATUSES, MANAGER_ROLES, STATUS_NAMES, available_transitions

ACTION_TITLES = {
    OrderStatus.CONFIRMED: "✅ Принять",
    OrderStatus.PREPARING: "👨‍🍳 Начать готовить",
    OrderStatus.READY_FOR_PICKUP: "📦 Готов к выдаче",
    OrderStatus.PICKED_UP: "🚚 Забрал заказ",
    OrderStatus.DELIVERED: "✅ Доставлен",
    OrderStatus.CANCELLED: "❌ Отменить",
    OrderStatus.ARCHIVED: "🗄 В архив",
}


def transition_callback(order_id: int, target: OrderStatus) -> str:
    return f"order:{target.value}:{order_id}"


def parse_transition_callback(data: str) -> tuple[OrderStatus, int]:
    """order:<status>:<id> -> (status, id). ValueError при мусоре."""
    prefix, status, order_id = data.split(":")
    if prefix != "order":
        raise ValueError(f"Unexpected callback prefix: {prefix}")
    return OrderStatus(status), int(order_id)


def get_order_actions_kb(order_id: int, status: OrderStatus, role: UserRole) -> InlineKeyboardMarkup | None:
    """
    Кнопки доступных переходов для роли.
    Отмена всегда последней строкой, чтобы её не нажимали случайно.
    """
    targets = available_transitions(status, role)
    if not targets:
        return None
    rows = []
    cancel_row = None
    for target in targets:
        button = InlineKeyboardButton(
            text=ACTION_TITLES.get(target, target.value),
            callback_data=transition_callback(order_id, target),
        )
        if target == OrderStatus.CANCELLED:
            cancel_row = [button]
        else:
            rows.append([button])
    if cancel_row:
        rows.append(cancel_row)
    return InlineKeyboardMarkup(inline_keyboard=rows)


def get_courier_offer_kb(order_id: int) -> InlineKeyboardMarkup:
    """Кто первый нажмет — тот и везет."""
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="✅ Взять заказ", callback_data=f"courier:take:{order_id}")]
    ])


def get_orders_list_kb(orders: list, back_callback: str | None = None) -> InlineKeyboardMarkup:
    """Список заказов кнопками по 2 в строке. При нажатии — карточка заказа."""
    rows = []
    for i in range(0, len(orders), 2):
        row = []
        for o in orders[i:i + 2]:
            row.append(InlineKeyboardButton(
                text=f"#{o.id} · {STATUS_NAMES.get(o.status, o.status.value)}",
                callback_data=f"order_card:{o.id}"
            ))
        rows.append(row)
    if back_callback:
        rows.append([InlineKeyboardButton(text="⬅ Назад", callback_data=back_callback)])
    return InlineKeyboardMarkup(inline_keyboard=rows)


def get_order_card_kb(order, role: UserRole, back_callback: str | None = None) -> InlineKeyboardMarkup | None:
    """Карточка заказа: переходы роли + назначение курьера + назад."""
    base = get_order_actions_kb(order.id, order.status, role)
    rows = list(base.inline_keyboard) if base else []
    if order.courier_id is None and order.status in ASSIGNABLE_STATUSES:
        if role in MANAGER_ROLES:
            rows.insert(0, [get_assign_courier_button(order.id)])
        elif role == UserRole.COURIER:
            rows.insert(0, get_courier_offer_kb(order.id).inline_keyboard[0])
    if back_callback:
        rows.append([InlineKeyboardButton(text="⬅ Назад", callback_data=back_callback)])
    return InlineKeyboardMarkup(inline_keyboard=rows) if rows else None
