from types import SimpleNamespace

import pytest

from database.models import OrderStatus
from handlers import restaurant
from services.validation import OrderItemInput

S = OrderStatus


class FakeMessage:
    def __init__(self):
        self.edits = []

    async def edit_text(self, text, reply_markup=None, parse_mode=None, **kwargs):
        self.edits.append(SimpleNamespace(text=text, reply_markup=reply_markup))


class FakeCallback:
    def __init__(self, data):
        self.data = data
        self.message = FakeMessage()
        self.answers = []

    async def answer(self, text=None, show_alert=False):
        self.answers.append((text, show_alert))


def buttons(markup):
    return [b.callback_data for row in markup.inline_keyboard for b in row]


@pytest.mark.parametrize("data, handler", [
    ("restaurant:assign:abc", restaurant.choose_courier),
    ("restaurant:assign:", restaurant.choose_courier),
    ("restaurant:assign_to:5", restaurant.assign_courier),
    ("restaurant:assign_to:5:x", restaurant.assign_courier),
])
async def test_malformed_callbacks_answer_error(session, world, identity_of, service, data, handler):
    callback = FakeCallback(data)
    await handler(callback, session=session, identity=await identity_of(world.admin_a), order_service=service)
    assert callback.answers == [("Ошибка", True)]
    assert callback.message.edits == []


async def test_finished_list_includes_cancelled_orders(session, world, identity_of, service):
    customer = await identity_of(world.customer)
    order = await service.create_order(
        session, customer, world.rest_a.id, [OrderItemInput(menu_item_id=world.plov.id, quantity=1)],
    )
    await service.transition_order(session, order.id, S.CANCELLED, customer)

    callback = FakeCallback("restaurant:finished")
    await restaurant.restaurant_orders(
        callback, session=session, identity=await identity_of(world.admin_a), order_service=service,
    )
    edit = callback.message.edits[0]
    assert "Завершённые" in edit.text
    assert f"order_card:{order.id}" in buttons(edit.reply_markup)
    await service.dispatcher.drain()
