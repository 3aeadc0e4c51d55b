"""
Сервис для работы с заказами: хранилище + машина состояний + уведомления.

Все изменения статуса идут через transition_order: проверка прав, проверка
ребра графа, условный UPDATE по текущему статусу, история, commit и только
потом уведомления.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import MenuItem, Order, OrderItem, OrderStatus, OrderStatusHistory, UserRole
from services import db_ops
from services.access import PERMISSIONS, Action, Identity, Resource, authorize, order_scope_clause
from services.errors import Forbidden, InvalidTransition, NotFound, PreconditionFailed, Unauthenticated
from services.notifications import NotificationDispatcher, OrderEvent, build_snapshot
from services.order_state import (
    ACTIVE_STATUSES,
    ASSIGNABLE_STATUSES,
    CourierAssigned,
    Transition,
    check_courier_assignment,
    check_transition,
)
from services.validation import OrderItemInput

logger = logging.getLogger(__name__)

# Какую временную метку проставить при переходе в статус
STATUS_TIMESTAMPS = {
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.ARCHIVED: "archived_at",
}


class OrderService:
    """Сервис для создания и управления заказами."""

    def __init__(self, dispatcher: Optional[NotificationDispatcher] = None):
        self.dispatcher = dispatcher

    async def _notify(self, session: AsyncSession, order_id: int, event: OrderEvent) -> None:
        """Уведомить после commit. Ошибка здесь не откатывает переход."""
        if self.dispatcher is None:
            return
        try:
            order = await db_ops.get_order_with_relations(session, order_id)
            snapshot = await build_snapshot(session, order)
        except Exception:
            logger.error("Failed to prepare notifications for order %s", order_id, exc_info=True)
            return
        self.dispatcher.dispatch(snapshot, event)

    async def create_order(
        self,
        session: AsyncSession,
        identity: Identity,
        restaurant_id: int,
        items: Sequence[OrderItemInput],
        address: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        comment: Optional[str] = None,
    ) -> Order:
        """
        Создать заказ в статусе pending.

        Цены и названия позиций копируются из меню на момент заказа.

        Raises:
            Forbidden: роль не может создавать заказы
            NotFound: ресторан или позиция меню не найдены
            PreconditionFailed: ресторан закрыт, позиция недоступна, пустой заказ
        """
        authorize(identity, Action.CREATE_ORDER, Resource(restaurant_id=restaurant_id, customer_id=identity.user_id))
        if identity.user_id is None:
            raise PreconditionFailed("Пользователь не зарегистрирован")
        if not items:
            raise PreconditionFailed("Заказ не может быть пустым")

        restaurant = await db_ops.get_restaurant_by_id(session, restaurant_id)
        if restaurant is None:
            raise NotFound("Ресторан не найден", restaurant_id=restaurant_id)
        if not restaurant.is_active:
            raise PreconditionFailed("Ресторан сейчас не принимает заказы", restaurant_id=restaurant_id)

        # Одинаковые позиции схлопываем
        quantities: dict[int, int] = {}
        for item in items:
            quantities[item.menu_item_id] = quantities.get(item.menu_item_id, 0) + item.quantity

        result = await session.execute(select(MenuItem).where(MenuItem.id.in_(list(quantities))))
        menu = {m.id: m for m in result.scalars().all()}

        order = Order(
            restaurant_id=restaurant_id,
            customer_id=identity.user_id,
            status=OrderStatus.PENDING,
            address=address,
            latitude=latitude,
            longitude=longitude,
            comment=comment,
        )
        total = 0.0
        for menu_item_id, quantity in quantities.items():
            menu_item = menu.get(menu_item_id)
            if menu_item is None or menu_item.restaurant_id != restaurant_id:
                raise NotFound("Позиция меню не найдена", menu_item_id=menu_item_id)
            if not menu_item.is_available:
                raise PreconditionFailed(f"Позиция «{menu_item.name}» недоступна", menu_item_id=menu_item_id)
            order.items.append(OrderItem(
                menu_item_id=menu_item.id,
                name=menu_item.name,
                quantity=quantity,
                price=menu_item.price,
            ))
            total += menu_item.price * quantity
        order.total = round(total, 2)

        session.add(order)
        await session.flush()  # Получаем ID заказа

        transition = Transition(
            order_id=order.id,
            from_status=None,
            to_status=OrderStatus.PENDING,
            actor_role=identity.role,
            actor_id=identity.user_id,
        )
        session.add(self._history_row(transition))
        await session.commit()

        logger.info(
            "Order created: id=%s, customer=%s, restaurant=%s, items=%s, total=%s",
            order.id, identity.user_id, restaurant_id, len(quantities), order.total,
        )
        await self._notify(session, order.id, transition)
        return await self.get_order(session, order.id)

    async def get_order(self, session: AsyncSession, order_id: int, identity: Optional[Identity] = None) -> Order:
        """
        Заказ со связями. С identity — дополнительно проверяет область доступа.

        Raises:
            NotFound: заказа нет
            Forbidden: заказ вне области доступа identity
        """
        order = await db_ops.get_order_with_relations(session, order_id)
        if order is None:
            raise NotFound("Заказ не найден", order_id=order_id)
        if identity is not None:
            authorize(identity, Action.VIEW_ORDER, Resource.from_order(order))
        return order

    async def list_orders(
        self,
        session: AsyncSession,
        identity: Identity,
        status: Optional[OrderStatus] = None,
        restaurant_id: Optional[int] = None,
        active_only: bool = False,
        statuses: Optional[Sequence[OrderStatus]] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        """Заказы, видимые identity, новые сверху. Чужие заказы просто не попадают в выборку."""
        if Action.LIST_ORDERS not in PERMISSIONS.get(identity.role, frozenset()):
            raise Forbidden()
        stmt = select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
        scope = order_scope_clause(identity)
        if scope is not None:
            stmt = stmt.where(scope)
        if status is not None:
            stmt = stmt.where(Order.status == status)
        elif statuses:
            stmt = stmt.where(Order.status.in_(list(statuses)))
        elif active_only:
            stmt = stmt.where(Order.status.in_(list(ACTIVE_STATUSES)))
        if restaurant_id is not None:
            stmt = stmt.where(Order.restaurant_id == restaurant_id)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def transition_order(
        self,
        session: AsyncSession,
        order_id: int,
        target: OrderStatus,
        identity: Identity,
    ) -> Order:
        """
        Перевести заказ в target от имени identity.

        Raises:
            NotFound: заказа нет
            InvalidTransition: нет такого ребра или статус успели изменить
            Unauthorized: роль не может выполнить этот переход
            PreconditionFailed: не назначен курьер
            Forbidden: заказ вне области доступа

        Порядок: ребро графа и роль, затем область доступа.
        """
        order = await db_ops.get_order_with_relations(session, order_id)
        if order is None:
            raise NotFound("Заказ не найден", order_id=order_id)
        if identity is None:
            raise Unauthenticated()

        transition = check_transition(order, target, identity.role, identity.user_id)
        authorize(identity, Action.TRANSITION_ORDER, Resource.from_order(order))
        await self.apply_transition(session, transition)

        logger.info(
            "Order status updated: id=%s, %s -> %s, role=%s, user=%s",
            order_id, transition.from_status.value, transition.to_status.value,
            identity.role.value, identity.user_id,
        )
        await self._notify(session, order_id, transition)
        return await self.get_order(session, order_id)

    async def apply_transition(self, session: AsyncSession, transition: Transition) -> None:
        """
        Записать проверенный переход: UPDATE ... WHERE status = from_status.

        Если статус уже изменил кто-то другой, строк не обновится и будет
        InvalidTransition, а транзакция откатится целиком.
        """
        values = {"status": transition.to_status, "updated_at": transition.at}
        stamp = STATUS_TIMESTAMPS.get(transition.to_status)
        if stamp:
            values[stamp] = transition.at

        stmt = (
            update(Order)
            .where(Order.id == transition.order_id, Order.status == transition.from_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            await session.rollback()
            logger.warning(
                "Lost status race: order=%s expected %s -> %s",
                transition.order_id, transition.from_status.value, transition.to_status.value,
            )
            raise InvalidTransition(
                "Статус заказа уже изменился",
                from_status=transition.from_status.value,
                to_status=transition.to_status.value,
            )
        session.add(self._history_row(transition))
        await session.commit()

    async def assign_courier(
        self,
        session: AsyncSession,
        order_id: int,
        identity: Identity,
        courier_id: Optional[int] = None,
    ) -> Order:
        """
        Назначить курьера на заказ.

        Курьер может только взять заказ сам (courier_id игнорируется).
        Админ ресторана и супер-админ назначают любого подходящего курьера.
        Кто первый взял, тот и везет: UPDATE ... WHERE courier_id IS NULL.
        """
        order = await db_ops.get_order_with_relations(session, order_id)
        if order is None:
            raise NotFound("Заказ не найден", order_id=order_id)

        if identity.role == UserRole.COURIER:
            authorize(identity, Action.TAKE_ORDER, Resource.from_order(order))
            courier_id = identity.user_id
        else:
            authorize(identity, Action.ASSIGN_COURIER, Resource.from_order(order))
            if courier_id is None:
                raise PreconditionFailed("Не указан курьер")

        courier = await db_ops.get_user_by_id(session, courier_id)
        if courier is None or courier.role != UserRole.COURIER or not courier.is_active:
            raise NotFound("Курьер не найден", courier_id=courier_id)
        if courier.courier_restaurant_id not in (None, order.restaurant_id):
            raise PreconditionFailed("Курьер работает с другим рестораном", courier_id=courier_id)

        check_courier_assignment(order, courier_id)
        if order.courier_id == courier_id:
            return order

        stmt = (
            update(Order)
            .where(
                Order.id == order_id,
                Order.courier_id.is_(None),
                Order.status.in_(list(ASSIGNABLE_STATUSES)),
            )
            .values(courier_id=courier_id, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            await session.rollback()
            logger.info("Order %s already taken, courier %s was late", order_id, courier_id)
            raise PreconditionFailed("Заказ уже взят другим курьером", order_id=order_id)
        await session.commit()

        logger.info(
            "Courier assigned: order=%s, courier=%s, by role=%s user=%s",
            order_id, courier_id, identity.role.value, identity.user_id,
        )
        event = CourierAssigned(
            order_id=order_id,
            courier_id=courier_id,
            status=order.status,
            actor_role=identity.role,
            actor_id=identity.user_id,
        )
        await self._notify(session, order_id, event)
        return await self.get_order(session, order_id)

    @staticmethod
    def _history_row(transition: Transition) -> OrderStatusHistory:
        return OrderStatusHistory(
            order_id=transition.order_id,
            from_status=transition.from_status,
            to_status=transition.to_status,
            actor_role=transition.actor_role,
            actor_id=transition.actor_id,
            created_at=transition.at,
        )
