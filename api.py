"""
HTTP API маркетплейса (заказы, роли).
Запуск: uvicorn api:app --host 0.0.0.0 --port 8000

Аутентификация: Authorization: Bearer <telegram_id>.<hmac>, см. services.access.sign_token.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from config import config
from database.core import get_session
from database.models import Order, OrderStatus
from services.access import Identity, resolve_identity, verify_token
from services.errors import MarketplaceError, Unauthenticated
from services.order_service import OrderService
from services.order_state import available_transitions, is_active
from services.validation import AssignCourierRequest, CreateOrderRequest, TransitionRequest

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Бот (только для отправки уведомлений), Redis, кеш прав, диспетчер."""
    from aiogram import Bot
    from main import create_redis
    from services.cache import init_cache
    from services.notifications import NotificationDispatcher, NotificationSettings

    bot = Bot(token=config.BOT_TOKEN)
    redis_client = await create_redis()
    await init_cache(redis_client)
    notifier = NotificationDispatcher(bot, NotificationSettings.from_config(config), redis_client)
    app.state.order_service = OrderService(notifier)
    logger.info("API started")
    try:
        yield
    finally:
        await notifier.drain()
        await bot.session.close()
        if redis_client is not None:
            await redis_client.aclose()
        logger.info("API stopped")


app = FastAPI(title="Delivery Marketplace API", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.CORS_ORIGIN],
    allow_methods=["*"],
    allow_headers=["*"],
)

bearer = HTTPBearer(auto_error=False)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(
        status_code=exc.http_status,
        content={"success": False, "error": exc.to_dict()},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": {"code": "VALIDATION_ERROR", "message": "Некорректные данные", "details": jsonable_encoder(exc.errors())},
        },
    )


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service


async def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    session: AsyncSession = Depends(get_session),
) -> Identity:
    telegram_id = verify_token(credentials.credentials if credentials else None)
    return await resolve_identity(session, telegram_id)


def order_to_dict(order: Order, identity: Identity) -> dict:
    return {
        "id": order.id,
        "restaurant_id": order.restaurant_id,
        "restaurant": order.restaurant.name if order.restaurant else None,
        "customer_id": order.customer_id,
        "courier_id": order.courier_id,
        "status": order.status.value,
        "is_active": is_active(order.status),
        "address": order.address,
        "latitude": order.latitude,
        "longitude": order.longitude,
        "comment": order.comment,
        "total": order.total,
        "items": [
            {
                "menu_item_id": item.menu_item_id,
                "name": item.name,
                "quantity": item.quantity,
                "price": item.price,
            }
            for item in order.items
        ],
        "available_transitions": [s.value for s in available_transitions(order.status, identity.role)],
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
        "delivered_at": order.delivered_at.isoformat() if order.delivered_at else None,
        "cancelled_at": order.cancelled_at.isoformat() if order.cancelled_at else None,
    }


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/auth/me")
async def me(identity: Identity = Depends(get_identity)):
    return {"success": True, "identity": identity.to_dict()}


@app.post("/api/orders", status_code=201)
async def create_order(
    body: CreateOrderRequest,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
    service: OrderService = Depends(get_order_service),
):
    order = await service.create_order(
        session,
        identity,
        restaurant_id=body.restaurant_id,
        items=body.items,
        address=body.address,
        latitude=body.latitude,
        longitude=body.longitude,
        comment=body.comment,
    )
    return {"success": True, "order": order_to_dict(order, identity)}


@app.get("/api/orders")
async def list_orders(
    status: Optional[OrderStatus] = None,
    restaurant_id: Optional[int] = None,
    active: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
    service: OrderService = Depends(get_order_service),
):
    orders = await service.list_orders(
        session, identity, status=status, restaurant_id=restaurant_id,
        active_only=active, limit=limit, offset=offset,
    )
    # В списке без позиций: items не загружены
    return {
        "success": True,
        "orders": [
            {
                "id": o.id,
                "restaurant_id": o.restaurant_id,
                "customer_id": o.customer_id,
                "courier_id": o.courier_id,
                "status": o.status.value,
                "total": o.total,
                "created_at": o.created_at.isoformat() if o.created_at else None,
            }
            for o in orders
        ],
    }


@app.get("/api/orders/{order_id}")
async def get_order(
    order_id: int,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
    service: OrderService = Depends(get_order_service),
):
    order = await service.get_order(session, order_id, identity)
    return {"success": True, "order": order_to_dict(order, identity)}


@app.patch("/api/orders/{order_id}/status")
async def transition_order(
    order_id: int,
    body: TransitionRequest,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
    service: OrderService = Depends(get_order_service),
):
    order = await service.transition_order(session, order_id, body.status, identity)
    return {"success": True, "order": order_to_dict(order, identity)}


@app.post("/api/orders/{order_id}/courier")
async def assign_courier(
    order_id: int,
    body: AssignCourierRequest,
    identity: Identity = Depends(get_identity),
    session: AsyncSession = Depends(get_session),
    service: OrderService = Depends(get_order_service),
):
    order = await service.assign_courier(session, order_id, identity, courier_id=body.courier_id)
    return {"success": True, "order": order_to_dict(order, identity)}


if __name__ == "__main__":
    import uvicorn
    from main import setup_logging

    setup_logging()
    uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)
