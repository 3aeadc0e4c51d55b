"""
Гонки на файловой SQLite: у каждой сессии своё соединение,
как у двух параллельных запросов в проде.
"""
import asyncio

import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine

from database.core import Base
from database.models import OrderStatus, OrderStatusHistory
from services import db_ops
from services.errors import InvalidTransition, PreconditionFailed
from services.validation import OrderItemInput

S = OrderStatus


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}", connect_args={"timeout": 10})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


def hold_until_both_loaded(monkeypatch):
    """Оба запроса сначала читают заказ, и только потом пишут."""
    original = db_ops.get_order_with_relations
    loaded = 0
    both_loaded = asyncio.Event()

    async def load_then_wait(session, order_id):
        nonlocal loaded
        order = await original(session, order_id)
        if not both_loaded.is_set():
            loaded += 1
            if loaded == 2:
                both_loaded.set()
            await asyncio.wait_for(both_loaded.wait(), timeout=5)
        return order

    monkeypatch.setattr(db_ops, "get_order_with_relations", load_then_wait)


async def pending_order(service, session, world, identity_of):
    return await service.create_order(
        session,
        await identity_of(world.customer),
        restaurant_id=world.rest_a.id,
        items=[OrderItemInput(menu_item_id=world.plov.id, quantity=1)],
    )


async def test_confirm_and_cancel_race_only_one_applies(service, session, session_maker, world, identity_of, dispatcher, monkeypatch):
    order = await pending_order(service, session, world, identity_of)
    admin = await identity_of(world.admin_a)
    customer = await identity_of(world.customer)
    hold_until_both_loaded(monkeypatch)

    async def attempt(target, identity):
        async with session_maker() as own_session:
            try:
                return await service.transition_order(own_session, order.id, target, identity)
            except InvalidTransition as e:
                return e

    results = await asyncio.gather(attempt(S.CONFIRMED, admin), attempt(S.CANCELLED, customer))
    await dispatcher.drain()

    won = [r for r in results if not isinstance(r, InvalidTransition)]
    lost = [r for r in results if isinstance(r, InvalidTransition)]
    assert len(won) == 1 and len(lost) == 1

    async with session_maker() as check:
        final = await service.get_order(check, order.id)
        assert final.status == won[0].status
        applied = await check.scalar(
            select(func.count()).select_from(OrderStatusHistory).where(
                OrderStatusHistory.order_id == order.id,
                OrderStatusHistory.from_status == S.PENDING,
            )
        )
    assert applied == 1


async def test_two_couriers_take_at_once(service, session, session_maker, world, identity_of, dispatcher, monkeypatch):
    order = await pending_order(service, session, world, identity_of)
    order = await service.transition_order(session, order.id, S.CONFIRMED, await identity_of(world.admin_a))
    first = await identity_of(world.courier)
    second = await identity_of(world.courier2)
    hold_until_both_loaded(monkeypatch)

    async def take(identity):
        async with session_maker() as own_session:
            try:
                return await service.assign_courier(own_session, order.id, identity)
            except PreconditionFailed as e:
                return e

    results = await asyncio.gather(take(first), take(second))
    await dispatcher.drain()

    taken = [r for r in results if not isinstance(r, PreconditionFailed)]
    assert len(taken) == 1
    async with session_maker() as check:
        assert (await service.get_order(check, order.id)).courier_id == taken[0].courier_id
