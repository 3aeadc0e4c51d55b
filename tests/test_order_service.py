from types import SimpleNamespace

import pytest
from sqlalchemy import select

from database.models import Order, OrderStatus, OrderStatusHistory, UserRole
from services.errors import Forbidden, InvalidTransition, NotFound, PreconditionFailed, Unauthorized
from services.order_service import OrderService
from services.order_state import check_transition
from services.validation import OrderItemInput

S = OrderStatus


async def place_order(service, session, world, identity_of, customer=None):
    identity = await identity_of(customer or world.customer)
    return await service.create_order(
        session,
        identity,
        restaurant_id=world.rest_a.id,
        items=[
            OrderItemInput(menu_item_id=world.plov.id, quantity=2),
            OrderItemInput(menu_item_id=world.samsa.id, quantity=1),
        ],
        address="Chilanzar 5",
    )


async def move(service, session, order, identity_of, *steps):
    """steps: (user, status) по порядку."""
    for user, status in steps:
        order = await service.transition_order(session, order.id, status, await identity_of(user))
    return order


async def history(session, order_id):
    rows = await session.execute(
        select(OrderStatusHistory).where(OrderStatusHistory.order_id == order_id).order_by(OrderStatusHistory.id)
    )
    return [(h.from_status, h.to_status) for h in rows.scalars()]


async def test_create_order_snapshots_prices_and_notifies(service, session, world, identity_of, dispatcher, bot):
    order = await place_order(service, session, world, identity_of)

    assert order.status == S.PENDING
    assert order.customer_id == world.customer.id
    assert order.total == pytest.approx(2 * 35.0 + 8.5)
    assert {(i.name, i.quantity, i.price) for i in order.items} == {("Плов", 2, 35.0), ("Самса", 1, 8.5)}
    assert await history(session, order.id) == [(None, S.PENDING)]

    await dispatcher.drain()
    # клиент, персонал ресторана A и супер-админы (из БД и ADMIN_IDS)
    assert sorted(bot.chat_ids) == [100, 200, 201, 500, 900001]


async def test_create_order_validation(service, session, world, identity_of):
    customer = await identity_of(world.customer)

    with pytest.raises(NotFound):
        await service.create_order(session, customer, 9999, [OrderItemInput(menu_item_id=world.plov.id, quantity=1)])
    with pytest.raises(PreconditionFailed):
        await service.create_order(session, customer, world.closed.id, [OrderItemInput(menu_item_id=world.plov.id, quantity=1)])
    with pytest.raises(NotFound):
        # позиция из другого ресторана
        await service.create_order(session, customer, world.rest_a.id, [OrderItemInput(menu_item_id=world.aspirin.id, quantity=1)])
    with pytest.raises(PreconditionFailed):
        await service.create_order(session, customer, world.rest_a.id, [OrderItemInput(menu_item_id=world.sold_out.id, quantity=1)])
    with pytest.raises(PreconditionFailed):
        await service.create_order(session, customer, world.rest_a.id, [])

    courier = await identity_of(world.courier)
    with pytest.raises(Forbidden):
        await service.create_order(session, courier, world.rest_a.id, [OrderItemInput(menu_item_id=world.plov.id, quantity=1)])

    assert (await session.execute(select(Order))).scalars().all() == []


async def test_admin_confirms_customer_and_restaurant_notified(service, session, world, identity_of, dispatcher, bot):
    order = await place_order(service, session, world, identity_of)
    await dispatcher.drain()
    bot.sent.clear()

    order = await move(service, session, order, identity_of, (world.admin_a, S.CONFIRMED))
    assert order.status == S.CONFIRMED

    await dispatcher.drain()
    assert sorted(bot.chat_ids) == [100, 200, 201]
    assert world.courier.telegram_id not in bot.chat_ids


async def test_courier_cannot_jump_pending_to_preparing(service, session, world, identity_of):
    order = await place_order(service, session, world, identity_of)
    with pytest.raises(InvalidTransition):
        await move(service, session, order, identity_of, (world.courier, S.PREPARING))
    assert (await service.get_order(session, order.id)).status == S.PENDING


async def test_unassigned_courier_cannot_pick_up(service, session, world, identity_of):
    order = await place_order(service, session, world, identity_of)
    order = await move(
        service, session, order, identity_of,
        (world.admin_a, S.CONFIRMED), (world.chef_a, S.PREPARING), (world.chef_a, S.READY_FOR_PICKUP),
    )
    with pytest.raises(PreconditionFailed):
        await move(service, session, order, identity_of, (world.courier, S.PICKED_UP))


async def test_admin_of_other_restaurant_is_forbidden(service, session, world, identity_of):
    order = await place_order(service, session, world, identity_of)
    with pytest.raises(Forbidden):
        await move(service, session, order, identity_of, (world.admin_b, S.CONFIRMED))
    with pytest.raises(Forbidden):
        await service.get_order(session, order.id, await identity_of(world.admin_b))


async def test_other_customer_cannot_cancel(service, session, world, identity_of):
    order = await place_order(service, session, world, identity_of)
    with pytest.raises(Forbidden):
        await move(service, session, order, identity_of, (world.other_customer, S.CANCELLED))


async def test_chef_cannot_cancel(service, session, world, identity_of):
    order = await place_order(service, session, world, identity_of)
    with pytest.raises(Unauthorized):
        await move(service, session, order, identity_of, (world.chef_a, S.CANCELLED))


async def test_customer_cancels_preparing_order_courier_notified(service, session, world, identity_of, dispatcher, bot):
    order = await place_order(service, session, world, identity_of)
    order = await move(service, session, order, identity_of, (world.admin_a, S.CONFIRMED), (world.chef_a, S.PREPARING))
    await service.assign_courier(session, order.id, await identity_of(world.admin_a), courier_id=world.courier.id)
    await dispatcher.drain()
    bot.sent.clear()

    order = await move(service, session, order, identity_of, (world.customer, S.CANCELLED))
    assert order.status == S.CANCELLED
    assert order.cancelled_at is not None

    await dispatcher.drain()
    assert sorted(bot.chat_ids) == [100, 200, 201, 400]

    with pytest.raises(InvalidTransition):
        await move(service, session, order, identity_of, (world.customer, S.CANCELLED))


async def test_cancelling_delivered_order_is_invalid(service, session, world, identity_of):
    order = await place_order(service, session, world, identity_of)
    order = await move(
        service, session, order, identity_of,
        (world.admin_a, S.CONFIRMED), (world.chef_a, S.PREPARING), (world.chef_a, S.READY_FOR_PICKUP),
    )
    await service.assign_courier(session, order.id, await identity_of(world.courier))
    order = await move(service, session, order, identity_of, (world.courier, S.PICKED_UP), (world.courier, S.DELIVERED))
    assert order.delivered_at is not None

    with pytest.raises(InvalidTransition):
        await move(service, session, order, identity_of, (world.super_admin, S.CANCELLED))

    order = await move(service, session, order, identity_of, (world.admin_a, S.ARCHIVED))
    assert order.archived_at is not None
    assert await history(session, order.id) == [
        (None, S.PENDING),
        (S.PENDING, S.CONFIRMED),
        (S.CONFIRMED, S.PREPARING),
        (S.PREPARING, S.READY_FOR_PICKUP),
        (S.READY_FOR_PICKUP, S.PICKED_UP),
        (S.PICKED_UP, S.DELIVERED),
        (S.DELIVERED, S.ARCHIVED),
    ]


async def test_lost_race_on_status_is_invalid_transition(service, session, world, identity_of):
    order = await place_order(service, session, world, identity_of)
    admin = await identity_of(world.admin_a)

    # Оба запроса прочитали pending и прошли проверки
    stale = SimpleNamespace(id=order.id, status=S.PENDING, courier_id=None)
    confirm = check_transition(stale, S.CONFIRMED, admin.role, admin.user_id)
    cancel = check_transition(stale, S.CANCELLED, admin.role, admin.user_id)

    await service.apply_transition(session, cancel)
    with pytest.raises(InvalidTransition):
        await service.apply_transition(session, confirm)

    order = await service.get_order(session, order.id)
    assert order.status == S.CANCELLED
    assert await history(session, order.id) == [(None, S.PENDING), (S.PENDING, S.CANCELLED)]


async def test_first_courier_to_take_wins(service, session, world, identity_of, dispatcher, bot):
    order = await place_order(service, session, world, identity_of)
    order = await move(
        service, session, order, identity_of,
        (world.admin_a, S.CONFIRMED), (world.chef_a, S.PREPARING), (world.chef_a, S.READY_FOR_PICKUP),
    )
    await dispatcher.drain()
    # предложение ушло курьерам на смене: общим, но не курьеру ресторана B и не спящему
    offers = [m.chat_id for m in bot.sent if "ждёт курьера" in m.text]
    assert sorted(offers) == [400, 401]

    taken = await service.assign_courier(session, order.id, await identity_of(world.courier))
    assert taken.courier_id == world.courier.id

    with pytest.raises(PreconditionFailed):
        await service.assign_courier(session, order.id, await identity_of(world.courier2))

    # повторное нажатие тем же курьером ничего не ломает
    again = await service.assign_courier(session, order.id, await identity_of(world.courier))
    assert again.courier_id == world.courier.id


async def test_courier_of_other_restaurant_cannot_take(service, session, world, identity_of):
    order = await place_order(service, session, world, identity_of)
    order = await move(service, session, order, identity_of, (world.admin_a, S.CONFIRMED))
    with pytest.raises(Forbidden):
        await service.assign_courier(session, order.id, await identity_of(world.courier_b))
    with pytest.raises(PreconditionFailed):
        await service.assign_courier(session, order.id, await identity_of(world.admin_a), courier_id=world.courier_b.id)


async def test_assign_requires_assignable_status(service, session, world, identity_of):
    order = await place_order(service, session, world, identity_of)
    with pytest.raises(InvalidTransition):
        await service.assign_courier(session, order.id, await identity_of(world.courier))
    with pytest.raises(NotFound):
        await service.assign_courier(session, order.id, await identity_of(world.admin_a), courier_id=world.customer.id)


async def test_list_orders_is_scoped(service, session, world, identity_of):
    mine = await place_order(service, session, world, identity_of)
    theirs = await place_order(service, session, world, identity_of, customer=world.other_customer)

    customer_orders = await service.list_orders(session, await identity_of(world.customer))
    assert [o.id for o in customer_orders] == [mine.id]

    staff_a = await service.list_orders(session, await identity_of(world.chef_a))
    assert {o.id for o in staff_a} == {mine.id, theirs.id}
    assert await service.list_orders(session, await identity_of(world.admin_b)) == []

    assert await service.list_orders(session, await identity_of(world.courier)) == []
    boss = await service.list_orders(session, await identity_of(world.super_admin), status=S.PENDING)
    assert {o.id for o in boss} == {mine.id, theirs.id}


async def test_notification_failure_does_not_roll_back(session, world, identity_of, redis_client):
    from conftest import FakeBot
    from services.notifications import NotificationDispatcher, NotificationSettings

    dispatcher = NotificationDispatcher(FakeBot(fail_chats={100, 200, 201}), NotificationSettings(), redis_client)
    service = OrderService(dispatcher)
    order = await place_order(service, session, world, identity_of)
    order = await move(service, session, order, identity_of, (world.admin_a, S.CONFIRMED))
    await dispatcher.drain()

    assert (await service.get_order(session, order.id)).status == S.CONFIRMED


async def test_service_without_dispatcher(session, world, identity_of):
    service = OrderService()
    order = await place_order(service, session, world, identity_of)
    order = await move(service, session, order, identity_of, (world.super_admin, S.CONFIRMED))
    assert order.status == S.CONFIRMED


async def test_unknown_order(service, session, world, identity_of):
    with pytest.raises(NotFound):
        await service.transition_order(session, 424242, S.CONFIRMED, await identity_of(world.super_admin))


async def test_courier_cannot_read_orders_outside_the_pool(service, session, world, identity_of):
    order = await place_order(service, session, world, identity_of)
    courier = await identity_of(world.courier)
    with pytest.raises(Forbidden):
        await service.get_order(session, order.id, courier)

    order = await move(
        service, session, order, identity_of,
        (world.admin_a, S.CONFIRMED), (world.chef_a, S.PREPARING),
    )
    # пока заказ можно взять, курьер его видит
    assert (await service.get_order(session, order.id, courier)).id == order.id

    await service.assign_courier(session, order.id, await identity_of(world.courier2))
    order = await move(
        service, session, order, identity_of,
        (world.chef_a, S.READY_FOR_PICKUP), (world.courier2, S.PICKED_UP), (world.courier2, S.DELIVERED),
    )
    with pytest.raises(Forbidden):
        await service.get_order(session, order.id, courier)
    assert (await service.get_order(session, order.id, await identity_of(world.courier2))).status == S.DELIVERED


async def test_list_finished_orders_by_several_statuses(service, session, world, identity_of):
    cancelled = await place_order(service, session, world, identity_of)
    await move(service, session, cancelled, identity_of, (world.customer, S.CANCELLED))
    await place_order(service, session, world, identity_of)

    finished = await service.list_orders(
        session, await identity_of(world.admin_a), statuses=(S.DELIVERED, S.CANCELLED),
    )
    assert [o.id for o in finished] == [cancelled.id]
