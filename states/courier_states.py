from aiogram.fsm.state import State, StatesGroup

class CourierState(StatesGroup):
    waiting_location = State() # Ждём геолокацию курьера (reply-кнопка)
