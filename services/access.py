"""
Ролевой доступ: идентификация вызывающего и проверка области доступа.

- resolve_identity: telegram_id -> Identity (роль + рестораны), иначе Unauthenticated
- authorize: (роль, действие) по таблице PERMISSIONS + проверка области ресурса, иначе Forbidden
- sign_token / verify_token: bearer-токены HTTP API (HMAC-SHA256)
"""
from __future__ import annotations

import enum
import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select, false
from sqlalchemy.ext.asyncio import AsyncSession

from config import config
from database.models import Order, OrderStatus, RestaurantStaff, User, UserRole
from services.errors import Forbidden, Unauthenticated
from services.order_state import ASSIGNABLE_STATUSES

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    VIEW_ORDER = "view_order"
    LIST_ORDERS = "list_orders"
    CREATE_ORDER = "create_order"
    TRANSITION_ORDER = "transition_order"
    ASSIGN_COURIER = "assign_courier"
    TAKE_ORDER = "take_order"


PERMISSIONS: dict[UserRole, frozenset[Action]] = {
    UserRole.CUSTOMER: frozenset({
        Action.VIEW_ORDER, Action.LIST_ORDERS, Action.CREATE_ORDER, Action.TRANSITION_ORDER,
    }),
    UserRole.COURIER: frozenset({
        Action.VIEW_ORDER, Action.LIST_ORDERS, Action.TRANSITION_ORDER, Action.TAKE_ORDER,
    }),
    UserRole.CHEF: frozenset({
        Action.VIEW_ORDER, Action.LIST_ORDERS, Action.TRANSITION_ORDER,
    }),
    UserRole.RESTAURANT_ADMIN: frozenset({
        Action.VIEW_ORDER, Action.LIST_ORDERS, Action.TRANSITION_ORDER,
        Action.ASSIGN_COURIER,
    }),
    UserRole.SUPER_ADMIN: frozenset(Action),
}


@dataclass(frozen=True, slots=True)
class Identity:
    """Снимок прав вызывающего (не ORM-объект, безопасно кешировать)."""
    telegram_id: int
    role: UserRole
    user_id: Optional[int] = None
    full_name: str = ""
    restaurant_ids: frozenset = field(default_factory=frozenset)
    courier_restaurant_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "telegram_id": self.telegram_id,
            "role": self.role.value,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "restaurant_ids": sorted(self.restaurant_ids),
            "courier_restaurant_id": self.courier_restaurant_id,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Identity:
        return cls(
            telegram_id=d["telegram_id"],
            role=UserRole(d["role"]),
            user_id=d.get("user_id"),
            full_name=d.get("full_name", ""),
            restaurant_ids=frozenset(d.get("restaurant_ids") or ()),
            courier_restaurant_id=d.get("courier_restaurant_id"),
        )


@dataclass(frozen=True, slots=True)
class Resource:
    """То, к чему обращаются: достаточно владельцев заказа/ресторана."""
    restaurant_id: Optional[int] = None
    customer_id: Optional[int] = None
    courier_id: Optional[int] = None
    status: Optional[OrderStatus] = None

    @classmethod
    def from_order(cls, order: Order) -> Resource:
        return cls(
            restaurant_id=order.restaurant_id,
            customer_id=order.customer_id,
            courier_id=order.courier_id,
            status=order.status,
        )


# --- Tokens ---

def _signature(telegram_id: int, secret: str) -> str:
    return hmac.new(secret.encode(), str(telegram_id).encode(), hashlib.sha256).hexdigest()


def sign_token(telegram_id: int, secret: Optional[str] = None) -> str:
    secret = secret or config.API_TOKEN_SECRET
    if not secret:
        raise RuntimeError("API_TOKEN_SECRET is not set")
    return f"{telegram_id}.{_signature(telegram_id, secret)}"


def verify_token(token: Optional[str], secret: Optional[str] = None) -> int:
    """Проверить bearer-токен и вернуть telegram_id."""
    secret = secret or config.API_TOKEN_SECRET
    if not token or not secret:
        raise Unauthenticated()
    raw_id, _, signature = token.strip().partition(".")
    try:
        telegram_id = int(raw_id)
    except ValueError:
        raise Unauthenticated("Некорректный токен")
    if not hmac.compare_digest(signature, _signature(telegram_id, secret)):
        raise Unauthenticated("Некорректный токен")
    return telegram_id


# --- Identity ---

async def _load_identity(session: AsyncSession, telegram_id: int) -> Optional[Identity]:
    user = (await session.execute(
        select(User).where(User.telegram_id == telegram_id)
    )).scalar_one_or_none()

    if telegram_id in config.ADMIN_IDS_LIST:
        return Identity(
            telegram_id=telegram_id,
            role=UserRole.SUPER_ADMIN,
            user_id=user.id if user else None,
            full_name=user.full_name if user else "",
        )

    if user is None or not user.is_active:
        return None

    restaurant_ids: frozenset = frozenset()
    if user.role in (UserRole.RESTAURANT_ADMIN, UserRole.CHEF):
        rows = await session.execute(
            select(RestaurantStaff.restaurant_id).where(RestaurantStaff.user_id == user.id)
        )
        restaurant_ids = frozenset(rows.scalars().all())

    return Identity(
        telegram_id=telegram_id,
        role=user.role,
        user_id=user.id,
        full_name=user.full_name,
        restaurant_ids=restaurant_ids,
        courier_restaurant_id=user.courier_restaurant_id if user.role == UserRole.COURIER else None,
    )


async def resolve_identity(session: AsyncSession, telegram_id: Optional[int], use_cache: bool = True) -> Identity:
    """
    Определить роль и область доступа по telegram_id.

    Raises:
        Unauthenticated: нет id, пользователь неизвестен или не активен
    """
    if not telegram_id:
        raise Unauthenticated()

    from services import cache
    if use_cache and cache.user_cache is not None:
        cached = await cache.user_cache.get(telegram_id)
        if cached is not None:
            return cached

    identity = await _load_identity(session, telegram_id)
    if identity is None:
        logger.warning("Unauthenticated access attempt: telegram_id=%s", telegram_id)
        raise Unauthenticated("Пользователь не найден или не активен")

    if cache.user_cache is not None:
        await cache.user_cache.set(telegram_id, identity)
    return identity


# --- Authorization ---

def _in_scope(identity: Identity, action: Action, resource: Resource) -> bool:
    role = identity.role
    if role == UserRole.SUPER_ADMIN:
        return True
    if role in (UserRole.RESTAURANT_ADMIN, UserRole.CHEF):
        return resource.restaurant_id in identity.restaurant_ids
    if role == UserRole.COURIER:
        if resource.courier_id is not None and resource.courier_id == identity.user_id:
            return True
        own_pool = (
            identity.courier_restaurant_id is None
            or identity.courier_restaurant_id == resource.restaurant_id
        )
        # Занятость и статус при взятии проверяет check_courier_assignment
        if action == Action.TAKE_ORDER:
            return own_pool
        # Свободный заказ виден курьеру, только пока его можно взять
        return resource.courier_id is None and resource.status in ASSIGNABLE_STATUSES and own_pool
    if role == UserRole.CUSTOMER:
        return resource.customer_id is not None and resource.customer_id == identity.user_id
    return False


def can(identity: Identity, action: Action, resource: Resource) -> bool:
    return action in PERMISSIONS.get(identity.role, frozenset()) and _in_scope(identity, action, resource)


def authorize(identity: Optional[Identity], action: Action, resource: Resource) -> None:
    """
    Raises:
        Unauthenticated: identity отсутствует
        Forbidden: у роли нет действия или ресурс вне области доступа
    """
    if identity is None:
        raise Unauthenticated()
    if action not in PERMISSIONS.get(identity.role, frozenset()):
        raise Forbidden(f"Роль {identity.role.value} не может выполнить {action.value}")
    if not _in_scope(identity, action, resource):
        logger.warning(
            "Forbidden: telegram_id=%s role=%s action=%s resource=%s",
            identity.telegram_id, identity.role.value, action.value, resource,
        )
        raise Forbidden()


def order_scope_clause(identity: Identity):
    """WHERE-условие для списка заказов, видимых identity."""
    role = identity.role
    if role == UserRole.SUPER_ADMIN:
        return None
    if role in (UserRole.RESTAURANT_ADMIN, UserRole.CHEF):
        if not identity.restaurant_ids:
            return false()
        return Order.restaurant_id.in_(sorted(identity.restaurant_ids))
    if role == UserRole.COURIER:
        return Order.courier_id == identity.user_id
    if role == UserRole.CUSTOMER:
        return Order.customer_id == identity.user_id
    return false()
