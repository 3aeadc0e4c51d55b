from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton


def get_customer_menu_kb() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text="🧾 Мои заказы", callback_data="customer:orders")],
    ])
