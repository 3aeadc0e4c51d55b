"""
Машина состояний заказа.

Граф переходов и права ролей задаются явной таблицей: ребро (from, to) -> правило.
Сама машина ничего не пишет в БД — она проверяет переход и возвращает Transition,
который применяет OrderService.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

from database.models import OrderStatus, UserRole
from services.errors import InvalidTransition, PreconditionFailed, Unauthorized

STAFF_ROLES = frozenset({UserRole.RESTAURANT_ADMIN, UserRole.CHEF, UserRole.SUPER_ADMIN})
MANAGER_ROLES = frozenset({UserRole.RESTAURANT_ADMIN, UserRole.SUPER_ADMIN})

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.ARCHIVED})
ACTIVE_STATUSES = frozenset(s for s in OrderStatus if s not in TERMINAL_STATUSES)

# Статусы, в которых заказу можно назначить курьера
ASSIGNABLE_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP})


STATUS_NAMES = {
    OrderStatus.PENDING: "Ожидает подтверждения",
    OrderStatus.CONFIRMED: "Принят",
    OrderStatus.PREPARING: "Готовится",
    OrderStatus.READY_FOR_PICKUP: "Готов к выдаче",
    OrderStatus.PICKED_UP: "В пути",
    OrderStatus.DELIVERED: "Доставлен",
    OrderStatus.CANCELLED: "Отменен",
    OrderStatus.ARCHIVED: "В архиве",
}


@dataclass(frozen=True)
class EdgeRule:
    roles: frozenset
    requires_courier: bool = False


EDGES: dict[tuple[OrderStatus, OrderStatus], EdgeRule] = {
    (OrderStatus.PENDING, OrderStatus.CONFIRMED): EdgeRule(STAFF_ROLES),
    (OrderStatus.CONFIRMED, OrderStatus.PREPARING): EdgeRule(STAFF_ROLES),
    (OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP): EdgeRule(STAFF_ROLES),
    (OrderStatus.READY_FOR_PICKUP, OrderStatus.PICKED_UP): EdgeRule(frozenset({UserRole.COURIER}), requires_courier=True),
    (OrderStatus.PICKED_UP, OrderStatus.DELIVERED): EdgeRule(frozenset({UserRole.COURIER, UserRole.SUPER_ADMIN}), requires_courier=True),

    # Клиент может отменить, пока заказ не передан курьеру
    (OrderStatus.PENDING, OrderStatus.CANCELLED): EdgeRule(MANAGER_ROLES | {UserRole.CUSTOMER}),
    (OrderStatus.CONFIRMED, OrderStatus.CANCELLED): EdgeRule(MANAGER_ROLES | {UserRole.CUSTOMER}),
    (OrderStatus.PREPARING, OrderStatus.CANCELLED): EdgeRule(MANAGER_ROLES | {UserRole.CUSTOMER}),
    (OrderStatus.READY_FOR_PICKUP, OrderStatus.CANCELLED): EdgeRule(MANAGER_ROLES),
    (OrderStatus.PICKED_UP, OrderStatus.CANCELLED): EdgeRule(MANAGER_ROLES),

    (OrderStatus.DELIVERED, OrderStatus.ARCHIVED): EdgeRule(MANAGER_ROLES),
    (OrderStatus.CANCELLED, OrderStatus.ARCHIVED): EdgeRule(MANAGER_ROLES),
}


class OrderLike(Protocol):
    id: int
    status: OrderStatus
    courier_id: Optional[int]


@dataclass(frozen=True)
class Transition:
    order_id: int
    from_status: Optional[OrderStatus]
    to_status: OrderStatus
    actor_role: UserRole
    actor_id: Optional[int]
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_creation(self) -> bool:
        return self.from_status is None

    @property
    def is_cancellation(self) -> bool:
        return self.to_status == OrderStatus.CANCELLED


@dataclass(frozen=True)
class CourierAssigned:
    """Назначение курьера: статус не меняется, но курьера надо уведомить."""
    order_id: int
    courier_id: int
    status: OrderStatus
    actor_role: UserRole
    actor_id: Optional[int]
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def successors(status: OrderStatus) -> list[OrderStatus]:
    return [to for (frm, to) in EDGES if frm == status]


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_active(status: OrderStatus) -> bool:
    return status in ACTIVE_STATUSES


def available_transitions(status: OrderStatus, role: UserRole) -> list[OrderStatus]:
    """Переходы из status, разрешённые роли (для клавиатур бота и API)."""
    return [to for (frm, to), rule in EDGES.items() if frm == status and role in rule.roles]


def check_transition(
    order: OrderLike,
    target: OrderStatus,
    actor_role: UserRole,
    actor_id: Optional[int],
) -> Transition:
    """
    Проверить переход заказа в target.

    Порядок проверок: ребро графа -> роль -> предусловия.

    Raises:
        InvalidTransition: target не является прямым преемником текущего статуса
        Unauthorized: у роли нет права на это ребро
        PreconditionFailed: не назначен курьер (или курьер не тот)
    """
    current = OrderStatus(order.status)
    target = OrderStatus(target)
    rule = EDGES.get((current, target))
    if rule is None:
        raise InvalidTransition(
            f"Переход {current.value} → {target.value} невозможен",
            from_status=current.value,
            to_status=target.value,
        )

    if actor_role not in rule.roles:
        raise Unauthorized(
            f"Роль {actor_role.value} не может перевести заказ в {target.value}",
            role=actor_role.value,
            to_status=target.value,
        )

    if rule.requires_courier:
        if order.courier_id is None:
            raise PreconditionFailed("Курьер не назначен", order_id=order.id)
        if actor_role == UserRole.COURIER and order.courier_id != actor_id:
            raise PreconditionFailed("Заказ назначен другому курьеру", order_id=order.id)

    return Transition(
        order_id=order.id,
        from_status=current,
        to_status=target,
        actor_role=actor_role,
        actor_id=actor_id,
    )


def check_courier_assignment(order: OrderLike, courier_id: int) -> None:
    """Курьера можно назначить только активному заказу без курьера."""
    if OrderStatus(order.status) not in ASSIGNABLE_STATUSES:
        raise InvalidTransition(
            f"Нельзя назначить курьера в статусе {OrderStatus(order.status).value}",
            from_status=OrderStatus(order.status).value,
        )
    if order.courier_id is not None and order.courier_id != courier_id:
        raise PreconditionFailed("Заказ уже взят другим курьером", order_id=order.id)
