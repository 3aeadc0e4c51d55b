from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, joinedload

from database.models import User, UserRole, Restaurant, RestaurantStaff, Order
from services.cache import invalidate_user
from config import config

# --- User Services ---


async def get_user_by_telegram_id(session: AsyncSession, telegram_id: int) -> User | None:
    """Получить ORM-пользователя по telegram_id (привязан к сессии)."""
    stmt = select(User).where(User.telegram_id == telegram_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: int) -> User | None:
    return await session.get(User, user_id)


async def create_user(
    session: AsyncSession,
    telegram_id: int,
    full_name: str,
    role: UserRole = UserRole.CUSTOMER,
    chat_id: int | None = None,
    is_active: bool = True,
) -> User:
    """
    Создать пользователя.

    По умолчанию — активный клиент: клиенты регистрируются сами через /start.
    Персонал и курьеров назначает супер-админ.
    """
    user = User(
        telegram_id=telegram_id,
        telegram_chat_id=chat_id,
        full_name=full_name,
        role=role,
        is_active=is_active,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def get_or_create_customer(session: AsyncSession, telegram_id: int, full_name: str, chat_id: int | None = None) -> User:
    user = await get_user_by_telegram_id(session, telegram_id)
    if user:
        if chat_id and user.telegram_chat_id != chat_id:
            user.telegram_chat_id = chat_id
            await session.commit()
        return user
    return await create_user(session, telegram_id, full_name, chat_id=chat_id)


async def assign_role(
    session: AsyncSession,
    telegram_id: int,
    role: UserRole,
    restaurant_ids: list[int] | None = None,
    courier_restaurant_id: int | None = None,
) -> User | None:
    """Назначить роль и привязки к ресторанам. Инвалидирует кеш прав."""
    user = await get_user_by_telegram_id(session, telegram_id)
    if not user:
        return None

    user.role = role
    user.is_active = True
    user.courier_restaurant_id = courier_restaurant_id if role == UserRole.COURIER else None

    links = (await session.execute(
        select(RestaurantStaff).where(RestaurantStaff.user_id == user.id)
    )).scalars().all()
    for link in links:
        await session.delete(link)
    if role in (UserRole.RESTAURANT_ADMIN, UserRole.CHEF):
        for restaurant_id in restaurant_ids or []:
            session.add(RestaurantStaff(user_id=user.id, restaurant_id=restaurant_id))

    await session.commit()
    await session.refresh(user)
    await invalidate_user(telegram_id)
    return user


# --- Courier Services ---

async def set_courier_duty(session: AsyncSession, user: User, on_duty: bool, chat_id: int | None = None) -> User:
    user.is_on_duty = on_duty
    if chat_id and user.telegram_chat_id != chat_id:
        user.telegram_chat_id = chat_id
    await session.commit()
    await session.refresh(user)
    return user


async def update_courier_location(session: AsyncSession, user: User, lat: float, lon: float) -> User:
    user.last_lat = lat
    user.last_lon = lon
    user.location_updated_at = datetime.now(timezone.utc)
    await session.commit()
    await session.refresh(user)
    return user


async def get_pool_couriers(session: AsyncSession, restaurant_id: int) -> list[User]:
    """Курьеры на смене, которым можно предложить заказ: курьеры ресторана + общие."""
    stmt = (
        select(User)
        .where(
            User.role == UserRole.COURIER,
            User.is_active.is_(True),
            User.is_on_duty.is_(True),
            or_(User.courier_restaurant_id == restaurant_id, User.courier_restaurant_id.is_(None)),
        )
        .order_by(User.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# --- Restaurant Services ---

async def get_restaurant_by_id(session: AsyncSession, restaurant_id: int) -> Restaurant | None:
    stmt = select(Restaurant).where(Restaurant.id == restaurant_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_restaurant_staff(session: AsyncSession, restaurant_id: int) -> list[User]:
    """Активные админы и повара ресторана с включёнными уведомлениями."""
    stmt = (
        select(User)
        .join(RestaurantStaff, RestaurantStaff.user_id == User.id)
        .where(
            RestaurantStaff.restaurant_id == restaurant_id,
            RestaurantStaff.notifications_enabled.is_(True),
            User.is_active.is_(True),
        )
        .order_by(User.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_super_admin_chat_ids(session: AsyncSession) -> list[int]:
    """Супер-админы из ADMIN_IDS плюс активные пользователи с ролью super_admin."""
    stmt = select(User).where(User.role == UserRole.SUPER_ADMIN, User.is_active.is_(True))
    result = await session.execute(stmt)
    chat_ids = {u.chat_id for u in result.scalars().all()}
    chat_ids.update(config.ADMIN_IDS_LIST)
    return sorted(chat_ids)


# --- Order Services ---

async def get_order_with_relations(session: AsyncSession, order_id: int) -> Order | None:
    """Получить заказ со всеми связанными данными (eager loading)."""
    stmt = (
        select(Order)
        .options(
            selectinload(Order.items),
            joinedload(Order.restaurant),
            joinedload(Order.customer),
            joinedload(Order.courier)
        )
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.unique().scalar_one_or_none()
