"""
Диспетчер уведомлений о заказах.

plan() решает, кого и через какой канал уведомить о событии заказа;
dispatch() отправляет в фоне (fire-and-forget) и не блокирует запрос.
Ошибки доставки логируются и глушатся, повторов нет (at-most-once).
"""
from __future__ import annotations

import asyncio
import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from aiogram import Bot
from aiogram.types import InlineKeyboardMarkup
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Order, OrderStatus, UserRole
from keyboards.order_kbs import get_courier_offer_kb, get_order_actions_kb
from services import db_ops
from services.errors import NotificationDeliveryFailed
from services.order_state import STATUS_NAMES, CourierAssigned, Transition
from services.telegram_utils import escape_markdown

logger = logging.getLogger(__name__)

OrderEvent = Union[Transition, CourierAssigned]


class Channel(str, enum.Enum):
    TELEGRAM = "telegram"
    IN_APP = "in_app"


class RecipientKind(str, enum.Enum):
    CUSTOMER = "customer"
    RESTAURANT = "restaurant"
    COURIER = "courier"
    COURIER_POOL = "courier_pool"
    SUPER_ADMIN = "super_admin"


class NotificationSettings(BaseModel):
    """Настройки каналов. Передаются в диспетчер явно, без глобального состояния."""

    telegram_enabled: bool = True
    in_app_enabled: bool = True
    parse_mode: Optional[str] = "Markdown"
    send_timeout: float = Field(default=10.0, gt=0)
    max_concurrency: int = Field(default=5, ge=1, le=30)
    channel_prefix: str = "notifications:"

    @classmethod
    def from_config(cls, cfg) -> NotificationSettings:
        return cls(
            telegram_enabled=cfg.NOTIFY_TELEGRAM_ENABLED,
            in_app_enabled=cfg.NOTIFY_IN_APP_ENABLED,
            parse_mode=cfg.NOTIFY_PARSE_MODE or None,
            send_timeout=cfg.NOTIFY_SEND_TIMEOUT,
            max_concurrency=cfg.NOTIFY_MAX_CONCURRENCY,
            channel_prefix=cfg.NOTIFY_CHANNEL_PREFIX,
        )


@dataclass(frozen=True)
class Recipient:
    kind: RecipientKind
    user_id: Optional[int]
    chat_id: Optional[int]
    role: Optional[UserRole] = None


@dataclass(frozen=True)
class OrderSnapshot:
    """Всё, что нужно для уведомлений, без ORM: безопасно использовать после commit."""
    order_id: int
    restaurant_id: int
    restaurant_name: str
    status: OrderStatus
    total: float
    address: Optional[str]
    items: tuple = ()
    courier_id: Optional[int] = None
    customer: Optional[Recipient] = None
    courier: Optional[Recipient] = None
    restaurant: tuple = ()
    courier_pool: tuple = ()
    super_admins: tuple = ()


@dataclass(frozen=True)
class NotificationEvent:
    recipient: Recipient
    channel: Channel
    text: str
    order_id: int
    status: OrderStatus
    reply_markup: Optional[InlineKeyboardMarkup] = field(default=None, compare=False)


async def build_snapshot(session: AsyncSession, order: Order) -> OrderSnapshot:
    """
    Собрать получателей заказа. order должен быть загружен со связями
    (restaurant, customer, courier, items).
    """
    restaurant_recipients = []
    seen_chats = set()
    for user in await db_ops.get_restaurant_staff(session, order.restaurant_id):
        if user.chat_id in seen_chats:
            continue
        seen_chats.add(user.chat_id)
        restaurant_recipients.append(Recipient(RecipientKind.RESTAURANT, user.id, user.chat_id, user.role))
    if order.restaurant and order.restaurant.telegram_chat_id and order.restaurant.telegram_chat_id not in seen_chats:
        # Групповой чат ресторана: кнопки как у админа
        restaurant_recipients.append(
            Recipient(RecipientKind.RESTAURANT, None, order.restaurant.telegram_chat_id, UserRole.RESTAURANT_ADMIN)
        )

    pool = ()
    if order.status == OrderStatus.READY_FOR_PICKUP and order.courier_id is None:
        pool = tuple(
            Recipient(RecipientKind.COURIER_POOL, c.id, c.chat_id, UserRole.COURIER)
            for c in await db_ops.get_pool_couriers(session, order.restaurant_id)
        )

    super_admins = ()
    if order.status == OrderStatus.PENDING:
        super_admins = tuple(
            Recipient(RecipientKind.SUPER_ADMIN, None, chat_id, UserRole.SUPER_ADMIN)
            for chat_id in await db_ops.get_super_admin_chat_ids(session)
        )

    customer = order.customer
    courier = order.courier
    return OrderSnapshot(
        order_id=order.id,
        restaurant_id=order.restaurant_id,
        restaurant_name=order.restaurant.name if order.restaurant else "—",
        status=order.status,
        total=order.total,
        address=order.address,
        items=tuple((i.name, i.quantity, i.price) for i in order.items),
        courier_id=order.courier_id,
        customer=Recipient(RecipientKind.CUSTOMER, customer.id, customer.chat_id, UserRole.CUSTOMER) if customer else None,
        courier=Recipient(RecipientKind.COURIER, courier.id, courier.chat_id, UserRole.COURIER) if courier else None,
        restaurant=tuple(restaurant_recipients),
        courier_pool=pool,
        super_admins=super_admins,
    )


def _order_body(snapshot: OrderSnapshot) -> str:
    lines = [
        f"🆔 Заказ: #{snapshot.order_id}",
        f"🍽️ {escape_markdown(snapshot.restaurant_name)}",
    ]
    for name, qty, price in snapshot.items:
        lines.append(f"• {escape_markdown(name)} × {qty} — {price * qty:g}")
    lines.append(f"💰 Итого: {snapshot.total:g}")
    lines.append(f"📍 Адрес: {escape_markdown(snapshot.address or 'не указан')}")
    return "\n".join(lines)


CUSTOMER_TEXTS = {
    OrderStatus.PENDING: "🧾 *Заказ оформлен*\n\nЖдём подтверждения ресторана.",
    OrderStatus.CONFIRMED: "✅ *Заказ принят!*\n\nРесторан подтвердил заказ.",
    OrderStatus.PREPARING: "👨‍🍳 *Заказ готовится*",
    OrderStatus.READY_FOR_PICKUP: "📦 *Заказ готов*\n\nОжидаем курьера.",
    OrderStatus.PICKED_UP: "🚚 *Курьер в пути*",
    OrderStatus.DELIVERED: "✅ *Заказ доставлен!*\n\nПриятного аппетита!",
    OrderStatus.CANCELLED: "❌ *Заказ отменен*",
    OrderStatus.ARCHIVED: "🗄 Заказ перенесен в архив",
}


class NotificationDispatcher:
    """Маршрутизация и фоновая доставка уведомлений."""

    def __init__(self, bot: Optional[Bot], settings: NotificationSettings, redis_client=None):
        self.bot = bot
        self.settings = settings
        self.redis = redis_client
        self._semaphore = asyncio.Semaphore(settings.max_concurrency)
        self._tasks: set[asyncio.Task] = set()

    # --- Routing ---

    def plan(self, snapshot: OrderSnapshot, event: OrderEvent) -> list[NotificationEvent]:
        """Кого уведомить о событии. Чистая функция: без IO."""
        events: list[NotificationEvent] = []

        if isinstance(event, CourierAssigned):
            if snapshot.courier:
                text = (
                    "🚚 *Вам назначен заказ*\n\n"
                    f"{_order_body(snapshot)}\n\n"
                    "Заберите заказ в ресторане и нажмите «Забрал заказ»."
                )
                self._add(events, snapshot.courier, text, snapshot, role=UserRole.COURIER)
            return events

        target = event.to_status
        customer_text = CUSTOMER_TEXTS.get(target, f"📋 Статус заказа: {STATUS_NAMES.get(target, target.value)}")
        customer_text = f"{customer_text}\n\n🆔 Заказ: #{snapshot.order_id}"

        # Клиент: на каждое изменение статуса (и на создание)
        if snapshot.customer:
            self._add(events, snapshot.customer, customer_text, snapshot, role=UserRole.CUSTOMER, in_app=True)

        if event.is_creation:
            text = f"📋 *Новый заказ*\n\n{_order_body(snapshot)}"
            for r in snapshot.restaurant:
                self._add(events, r, text, snapshot, role=r.role)
            for r in snapshot.super_admins:
                self._add(events, r, text, snapshot, keyboard=False)
            return events

        if target in (OrderStatus.CONFIRMED, OrderStatus.CANCELLED):
            title = "❌ *Заказ отменен*" if target == OrderStatus.CANCELLED else "✅ *Заказ подтвержден*"
            text = f"{title}\n\n{_order_body(snapshot)}"
            for r in snapshot.restaurant:
                self._add(events, r, text, snapshot, role=r.role)

        if target == OrderStatus.CANCELLED and snapshot.courier:
            text = f"❌ *Заказ #{snapshot.order_id} отменен*\n\nЗабирать его не нужно."
            self._add(events, snapshot.courier, text, snapshot, keyboard=False)

        if target == OrderStatus.READY_FOR_PICKUP and snapshot.courier_id is None:
            text = (
                f"📦 *Заказ ждёт курьера*\n\n{_order_body(snapshot)}\n\n"
                "⚠️ *Кто первый возьмет — тот и везет!*"
            )
            for r in snapshot.courier_pool:
                self._add(events, r, text, snapshot, markup=get_courier_offer_kb(snapshot.order_id))

        return events

    def _add(
        self,
        events: list[NotificationEvent],
        recipient: Recipient,
        text: str,
        snapshot: OrderSnapshot,
        role: Optional[UserRole] = None,
        keyboard: bool = True,
        markup: Optional[InlineKeyboardMarkup] = None,
        in_app: bool = False,
    ) -> None:
        if markup is None and keyboard and role is not None:
            markup = get_order_actions_kb(snapshot.order_id, snapshot.status, role)
        if self.settings.telegram_enabled and recipient.chat_id:
            events.append(NotificationEvent(recipient, Channel.TELEGRAM, text, snapshot.order_id, snapshot.status, markup))
        if in_app and self.settings.in_app_enabled and self.redis is not None and recipient.user_id:
            events.append(NotificationEvent(recipient, Channel.IN_APP, text, snapshot.order_id, snapshot.status))

    # --- Delivery ---

    def dispatch(self, snapshot: OrderSnapshot, event: OrderEvent) -> Optional[asyncio.Task]:
        """
        Запланировать доставку в фоне и сразу вернуть управление.
        Никогда не бросает исключений вызывающему.
        """
        try:
            events = self.plan(snapshot, event)
        except Exception:
            logger.error("Notification planning failed for order %s", snapshot.order_id, exc_info=True)
            return None
        if not events:
            return None
        task = asyncio.create_task(self.deliver(events))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def deliver(self, events: list[NotificationEvent]) -> int:
        """Доставить события; вернуть количество успешных."""
        results = await asyncio.gather(*(self._deliver_one(e) for e in events))
        delivered = sum(1 for ok in results if ok)
        if events:
            logger.info(
                "Order %s notifications: delivered %s of %s",
                events[0].order_id, delivered, len(events),
            )
        return delivered

    async def _deliver_one(self, event: NotificationEvent) -> bool:
        try:
            async with self._semaphore:
                if event.channel == Channel.TELEGRAM:
                    await self._send_telegram(event)
                else:
                    await self._publish_in_app(event)
            return True
        except NotificationDeliveryFailed as e:
            logger.warning(
                "Notification not delivered: order=%s recipient=%s chat=%s channel=%s err=%s",
                event.order_id, event.recipient.kind.value, event.recipient.chat_id,
                event.channel.value, e.details.get("reason", e.message),
            )
            return False

    async def _send_telegram(self, event: NotificationEvent) -> None:
        if self.bot is None:
            raise NotificationDeliveryFailed(reason="bot is not configured")
        try:
            await asyncio.wait_for(
                self.bot.send_message(
                    chat_id=event.recipient.chat_id,
                    text=event.text,
                    parse_mode=self.settings.parse_mode,
                    reply_markup=event.reply_markup,
                ),
                timeout=self.settings.send_timeout,
            )
        except Exception as e:
            raise NotificationDeliveryFailed(reason=repr(e)) from e

    async def _publish_in_app(self, event: NotificationEvent) -> None:
        payload: dict[str, Any] = {
            "order_id": event.order_id,
            "status": event.status.value,
            "text": event.text,
        }
        channel = f"{self.settings.channel_prefix}{event.recipient.user_id}"
        try:
            await asyncio.wait_for(
                self.redis.publish(channel, json.dumps(payload, ensure_ascii=False)),
                timeout=self.settings.send_timeout,
            )
        except Exception as e:
            raise NotificationDeliveryFailed(reason=repr(e)) from e

    async def drain(self) -> None:
        """Дождаться фоновых отправок (при остановке и в тестах)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
