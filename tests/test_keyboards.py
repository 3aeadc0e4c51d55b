from types import SimpleNamespace

import pytest

from database.models import OrderStatus, UserRole
from keyboards.courier_kbs import get_courier_menu_kb
from keyboards.order_kbs import (
    get_order_actions_kb,
    get_order_card_kb,
    get_orders_list_kb,
    parse_transition_callback,
    transition_callback,
)

S = OrderStatus


def callbacks(kb):
    return [b.callback_data for row in kb.inline_keyboard for b in row]


def test_transition_callback_parses_back():
    data = transition_callback(15, S.READY_FOR_PICKUP)
    assert data == "order:ready_for_pickup:15"
    assert parse_transition_callback(data) == (S.READY_FOR_PICKUP, 15)


@pytest.mark.parametrize("data", ["order:flying:1", "courier:take:1", "order:confirmed", "order:confirmed:x"])
def test_garbage_callbacks_rejected(data):
    with pytest.raises(ValueError):
        parse_transition_callback(data)


def test_cancel_button_is_last():
    kb = get_order_actions_kb(3, S.PENDING, UserRole.RESTAURANT_ADMIN)
    assert callbacks(kb) == ["order:confirmed:3", "order:cancelled:3"]


def test_no_buttons_for_role_without_transitions():
    assert get_order_actions_kb(3, S.PENDING, UserRole.COURIER) is None


def test_card_offers_assignment_to_managers_and_take_to_couriers():
    order = SimpleNamespace(id=8, status=S.READY_FOR_PICKUP, courier_id=None)
    admin_kb = get_order_card_kb(order, UserRole.RESTAURANT_ADMIN, back_callback="menu:main")
    assert callbacks(admin_kb) == ["restaurant:assign:8", "order:cancelled:8", "menu:main"]

    courier_kb = get_order_card_kb(order, UserRole.COURIER)
    assert callbacks(courier_kb) == ["courier:take:8", "order:picked_up:8"]

    order.courier_id = 5
    assert callbacks(get_order_card_kb(order, UserRole.COURIER)) == ["order:picked_up:8"]


def test_card_without_actions():
    order = SimpleNamespace(id=8, status=S.ARCHIVED, courier_id=None)
    assert get_order_card_kb(order, UserRole.CUSTOMER) is None


def test_orders_list_two_per_row():
    orders = [SimpleNamespace(id=i, status=S.PENDING) for i in range(1, 4)]
    kb = get_orders_list_kb(orders, back_callback="menu:main")
    assert [len(row) for row in kb.inline_keyboard] == [2, 1, 1]
    assert kb.inline_keyboard[0][0].callback_data == "order_card:1"


def test_courier_menu_shows_duty_state():
    on = get_courier_menu_kb(True).inline_keyboard[0][0].text
    off = get_courier_menu_kb(False).inline_keyboard[0][0].text
    assert "Закончить" in on and "Начать" in off
