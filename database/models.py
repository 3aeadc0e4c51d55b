import enum
from datetime import datetime
from typing import Optional, List

from sqlalchemy import BigInteger, Integer, String, Boolean, ForeignKey, DateTime, Float, Text, Enum as PgEnum, Index, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database.core import Base
from config import config


# В SQLite автоинкремент корректно работает только для PRIMARY KEY типа INTEGER (rowid).
# Поэтому в dev/test режиме на SQLite используем Integer для PK, а в Postgres оставляем BigInteger.
PK_INT = Integer if config.DB_DIALECT in ("sqlite", "sqlite3") else BigInteger

# --- Enums ---
class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    COURIER = "courier"
    CHEF = "chef"
    RESTAURANT_ADMIN = "restaurant_admin"
    SUPER_ADMIN = "super_admin"

class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"

class RestaurantKind(str, enum.Enum):
    RESTAURANT = "restaurant"
    PHARMACY = "pharmacy"
    STORE = "store"

# --- Models ---

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    telegram_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False, index=True)
    # Chat ID для уведомлений; если не задан, шлём in-app
    telegram_chat_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    role: Mapped[UserRole] = mapped_column(PgEnum(UserRole, name="user_role_enum"), nullable=False, default=UserRole.CUSTOMER)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Только для курьеров. None означает общего курьера, иначе курьер конкретного ресторана
    courier_restaurant_id: Mapped[Optional[int]] = mapped_column(ForeignKey("restaurants.id"), nullable=True, index=True)
    is_on_duty: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    last_lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    staff_links: Mapped[List["RestaurantStaff"]] = relationship("RestaurantStaff", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        {"comment": "Пользователи: клиенты, курьеры, персонал ресторанов, супер-админы"},
    )

    @property
    def chat_id(self) -> Optional[int]:
        return self.telegram_chat_id or self.telegram_id


class Restaurant(Base):
    __tablename__ = "restaurants"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    kind: Mapped[RestaurantKind] = mapped_column(PgEnum(RestaurantKind, name="restaurant_kind_enum"), nullable=False, default=RestaurantKind.RESTAURANT)
    address: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    telegram_chat_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)  # Групповой чат ресторана
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    staff: Mapped[List["RestaurantStaff"]] = relationship("RestaurantStaff", back_populates="restaurant", cascade="all, delete-orphan")
    menu_items: Mapped[List["MenuItem"]] = relationship("MenuItem", back_populates="restaurant")

    __table_args__ = (
        {"comment": "Рестораны, аптеки и магазины"},
    )


class RestaurantStaff(Base):
    """Привязка restaurant_admin / chef к ресторану (один админ — несколько ресторанов)."""
    __tablename__ = "restaurant_staff"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id"), nullable=False, index=True)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="staff_links")
    restaurant: Mapped["Restaurant"] = relationship("Restaurant", back_populates="staff")

    __table_args__ = (
        UniqueConstraint("user_id", "restaurant_id", name="uq_restaurant_staff"),
    )


class MenuItem(Base):
    __tablename__ = "menu_items"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    restaurant: Mapped["Restaurant"] = relationship("Restaurant", back_populates="menu_items")


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)

    restaurant_id: Mapped[int] = mapped_column(ForeignKey("restaurants.id"), nullable=False, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    courier_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    status: Mapped[OrderStatus] = mapped_column(PgEnum(OrderStatus, name="order_status_enum"), default=OrderStatus.PENDING, nullable=False, index=True)
    address: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    restaurant: Mapped["Restaurant"] = relationship("Restaurant")
    customer: Mapped["User"] = relationship("User", foreign_keys=[customer_id])
    courier: Mapped[Optional["User"]] = relationship("User", foreign_keys=[courier_id])
    items: Mapped[List["OrderItem"]] = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    history: Mapped[List["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory", back_populates="order", cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
    )

    __table_args__ = (
        Index("ix_orders_restaurant_status", "restaurant_id", "status"),
        {"comment": "Заказы"},
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False)
    menu_item_id: Mapped[int] = mapped_column(ForeignKey("menu_items.id"), nullable=False)
    # Снимок названия и цены на момент заказа: меню может меняться
    name: Mapped[str] = mapped_column(String, nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)
    price: Mapped[float] = mapped_column(Float, nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(PK_INT, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    from_status: Mapped[Optional[OrderStatus]] = mapped_column(PgEnum(OrderStatus, name="order_status_enum"), nullable=True)
    to_status: Mapped[OrderStatus] = mapped_column(PgEnum(OrderStatus, name="order_status_enum"), nullable=False)
    actor_role: Mapped[UserRole] = mapped_column(PgEnum(UserRole, name="user_role_enum"), nullable=False)
    actor_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="history")
