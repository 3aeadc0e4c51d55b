import os

# config.py валидирует окружение при импорте
os.environ["BOT_TOKEN"] = "123456:TEST-token-for-pytest"
os.environ["API_TOKEN_SECRET"] = "pytest-secret-0123456789"
os.environ["ADMIN_IDS"] = "900001"
os.environ["DB_DIALECT"] = "sqlite"

from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from database.core import Base
from database.models import MenuItem, Restaurant, RestaurantStaff, User, UserRole
from services import cache
from services.access import resolve_identity
from services.notifications import NotificationDispatcher, NotificationSettings
from services.order_service import OrderService


class FakeBot:
    """Вместо aiogram.Bot: запоминает отправленное, для fail_chats бросает ошибку."""

    def __init__(self, fail_chats=()):
        self.sent = []
        self.fail_chats = set(fail_chats)

    async def send_message(self, chat_id, text, parse_mode=None, reply_markup=None):
        if chat_id in self.fail_chats:
            raise RuntimeError("Bad Request: chat not found")
        self.sent.append(SimpleNamespace(chat_id=chat_id, text=text, reply_markup=reply_markup))

    @property
    def chat_ids(self):
        return [m.chat_id for m in self.sent]


class FakeRedis:
    def __init__(self):
        self.published = []

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 1


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture(autouse=True)
def identity_cache():
    cache.user_cache = cache.MemoryUserCache()
    yield cache.user_cache
    cache.user_cache = None


@pytest.fixture
def bot():
    return FakeBot()


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def dispatcher(bot, redis_client):
    return NotificationDispatcher(bot, NotificationSettings(send_timeout=1.0), redis_client)


@pytest.fixture
def service(dispatcher):
    return OrderService(dispatcher)


@pytest_asyncio.fixture
async def world(session):
    """
    Два ресторана, меню и пользователи всех ролей.
    chat_id у всех = telegram_id.
    """
    rest_a = Restaurant(name="Plov Center", is_active=True)
    rest_b = Restaurant(name="Apteka 24", is_active=True)
    closed = Restaurant(name="Closed Kitchen", is_active=False)
    session.add_all([rest_a, rest_b, closed])
    await session.flush()

    plov = MenuItem(restaurant_id=rest_a.id, name="Плов", price=35.0, is_available=True)
    samsa = MenuItem(restaurant_id=rest_a.id, name="Самса", price=8.5, is_available=True)
    sold_out = MenuItem(restaurant_id=rest_a.id, name="Манты", price=30.0, is_available=False)
    aspirin = MenuItem(restaurant_id=rest_b.id, name="Аспирин", price=12.0, is_available=True)
    session.add_all([plov, samsa, sold_out, aspirin])

    def user(tg, name, role, is_active=True, **kw):
        u = User(telegram_id=tg, full_name=name, role=role, is_active=is_active, **kw)
        session.add(u)
        return u

    customer = user(100, "Aziz", UserRole.CUSTOMER)
    other_customer = user(101, "Dilnoza", UserRole.CUSTOMER)
    admin_a = user(200, "Admin A", UserRole.RESTAURANT_ADMIN)
    chef_a = user(201, "Chef A", UserRole.CHEF)
    admin_b = user(300, "Admin B", UserRole.RESTAURANT_ADMIN)
    courier = user(400, "Courier One", UserRole.COURIER, is_on_duty=True)
    courier2 = user(401, "Courier Two", UserRole.COURIER, is_on_duty=True)
    courier_b = user(402, "Courier B", UserRole.COURIER, is_on_duty=True, courier_restaurant_id=rest_b.id)
    off_duty = user(403, "Sleepy", UserRole.COURIER, is_on_duty=False)
    super_admin = user(500, "Boss", UserRole.SUPER_ADMIN)
    blocked = user(600, "Blocked", UserRole.CUSTOMER, is_active=False)
    await session.flush()

    session.add_all([
        RestaurantStaff(user_id=admin_a.id, restaurant_id=rest_a.id),
        RestaurantStaff(user_id=chef_a.id, restaurant_id=rest_a.id),
        RestaurantStaff(user_id=admin_b.id, restaurant_id=rest_b.id),
    ])
    await session.commit()

    return SimpleNamespace(
        rest_a=rest_a, rest_b=rest_b, closed=closed,
        plov=plov, samsa=samsa, sold_out=sold_out, aspirin=aspirin,
        customer=customer, other_customer=other_customer,
        admin_a=admin_a, chef_a=chef_a, admin_b=admin_b,
        courier=courier, courier2=courier2, courier_b=courier_b, off_duty=off_duty,
        super_admin=super_admin, blocked=blocked,
    )


@pytest.fixture
def identity_of(session):
    async def _identity(user):
        return await resolve_identity(session, user.telegram_id, use_cache=False)
    return _identity
