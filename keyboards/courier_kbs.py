from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton, ReplyKeyboardMarkup, KeyboardButton


def get_courier_menu_kb(is_on_duty: bool) -> InlineKeyboardMarkup:
    """Главное меню курьера"""
    duty_text = "🔴 Закончить смену" if is_on_duty else "🟢 Начать смену"
    return InlineKeyboardMarkup(inline_keyboard=[
        [InlineKeyboardButton(text=duty_text, callback_data="courier:duty")],
        [InlineKeyboardButton(text="📦 Мои заказы", callback_data="courier:my_orders")],
        [InlineKeyboardButton(text="📍 Отправить геолокацию", callback_data="courier:location")],
    ])


def get_courier_reply_kb() -> ReplyKeyboardMarkup:
    # Inline-кнопки не умеют запрашивать геолокацию, только reply
    return ReplyKeyboardMarkup(
        keyboard=[[KeyboardButton(text="📍 Отправить геолокацию", request_location=True)]],
        resize_keyboard=True,
        one_time_keyboard=True,
    )
