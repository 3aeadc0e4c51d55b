from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton


def get_restaurant_menu_kb() -> InlineKeyboardMarkup:
    """Меню персонала ресторана (и супер-админа)."""
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="📋 Активные заказы", callback_data="restaurant:active")],
        [InlineKeyboardButton(text="✅ Завершённые", callback_data="restaurant:finished")],
    ])


def get_assign_courier_button(order_id: int) -> InlineKeyboardButton:
    return InlineKeyboardButton(text="🚚 Назначить курьера", callback_data=f"restaurant:assign:{order_id}")


def get_couriers_kb(order_id: int, couriers: list) -> InlineKeyboardMarkup:
    """Курьеры на смене для назначения на заказ."""
    rows = [
        [InlineKeyboardButton(
            text=f"🚚 {c.full_name}",
            callback_data=f"restaurant:assign_to:{order_id}:{c.id}",
        )]
        for c in couriers
    ]
    rows.append([InlineKeyboardButton(text="⬅ Назад", callback_data=f"order_card:{order_id}")])
    return InlineKeyboardMarkup(inline_keyboard=rows)
