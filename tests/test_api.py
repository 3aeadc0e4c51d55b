import httpx
import pytest
import pytest_asyncio

import api
from database.core import get_session
from services.access import sign_token


def auth(user_or_tg):
    tg = getattr(user_or_tg, "telegram_id", user_or_tg)
    return {"Authorization": f"Bearer {sign_token(tg)}"}


@pytest_asyncio.fixture
async def client(session_maker, service):
    async def override_session():
        async with session_maker() as session:
            yield session

    api.app.dependency_overrides[get_session] = override_session
    api.app.state.order_service = service
    # ASGITransport не запускает lifespan: бот и Redis не нужны
    transport = httpx.ASGITransport(app=api.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await service.dispatcher.drain()
    api.app.dependency_overrides.clear()


async def create(client, world, user=None):
    resp = await client.post(
        "/api/orders",
        json={
            "restaurant_id": world.rest_a.id,
            "items": [{"menu_item_id": world.plov.id, "quantity": 1}],
            "address": "  Yunusabad 12  ",
        },
        headers=auth(user or world.customer),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["order"]


async def test_health(client):
    resp = await client.get("/health")
    assert resp.json() == {"status": "ok"}


async def test_auth_required(client, world):
    resp = await client.get("/api/orders")
    assert resp.status_code == 401
    assert resp.json() == {
        "success": False,
        "error": {"code": "UNAUTHENTICATED", "message": "Требуется аутентификация"},
    }
    assert resp.headers["WWW-Authenticate"] == "Bearer"

    resp = await client.get("/api/orders", headers={"Authorization": "Bearer 100.deadbeef"})
    assert resp.status_code == 401

    resp = await client.get("/api/auth/me", headers=auth(world.blocked))
    assert resp.status_code == 401


async def test_me(client, world):
    resp = await client.get("/api/auth/me", headers=auth(world.admin_a))
    body = resp.json()
    assert body["identity"]["role"] == "restaurant_admin"
    assert body["identity"]["restaurant_ids"] == [world.rest_a.id]


async def test_create_and_read_order(client, world):
    order = await create(client, world)
    assert order["status"] == "pending"
    assert order["is_active"] is True
    assert order["address"] == "Yunusabad 12"
    assert order["total"] == 35.0
    assert order["available_transitions"] == ["cancelled"]

    resp = await client.get(f"/api/orders/{order['id']}", headers=auth(world.admin_a))
    assert resp.status_code == 200
    assert resp.json()["order"]["available_transitions"] == ["confirmed", "cancelled"]

    resp = await client.get(f"/api/orders/{order['id']}", headers=auth(world.other_customer))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "FORBIDDEN"


async def test_create_order_validation_errors(client, world):
    resp = await client.post(
        "/api/orders",
        json={"restaurant_id": world.rest_a.id, "items": []},
        headers=auth(world.customer),
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    resp = await client.post(
        "/api/orders",
        json={"restaurant_id": world.rest_a.id, "items": [{"menu_item_id": 9999, "quantity": 1}]},
        headers=auth(world.customer),
    )
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.parametrize(
    "user_attr, target, status_code, code",
    [
        ("courier", "preparing", 409, "INVALID_TRANSITION"),
        ("admin_b", "confirmed", 403, "FORBIDDEN"),
        ("chef_a", "cancelled", 403, "UNAUTHORIZED"),
        ("admin_a", "confirmed", 200, None),
    ],
)
async def test_transition_errors_map_to_http(client, world, user_attr, target, status_code, code):
    order = await create(client, world)
    resp = await client.patch(
        f"/api/orders/{order['id']}/status",
        json={"status": target},
        headers=auth(getattr(world, user_attr)),
    )
    assert resp.status_code == status_code, resp.text
    if code:
        assert resp.json()["success"] is False
        assert resp.json()["error"]["code"] == code
    else:
        assert resp.json()["order"]["status"] == target


async def test_pickup_without_courier_is_412_then_take(client, world):
    order = await create(client, world)
    for user, target in [(world.admin_a, "confirmed"), (world.chef_a, "preparing"), (world.chef_a, "ready_for_pickup")]:
        resp = await client.patch(f"/api/orders/{order['id']}/status", json={"status": target}, headers=auth(user))
        assert resp.status_code == 200

    resp = await client.patch(f"/api/orders/{order['id']}/status", json={"status": "picked_up"}, headers=auth(world.courier))
    assert resp.status_code == 412
    assert resp.json()["error"]["code"] == "PRECONDITION_FAILED"

    resp = await client.post(f"/api/orders/{order['id']}/courier", json={}, headers=auth(world.courier))
    assert resp.status_code == 200
    assert resp.json()["order"]["courier_id"] == world.courier.id

    resp = await client.post(f"/api/orders/{order['id']}/courier", json={}, headers=auth(world.courier2))
    assert resp.status_code == 412

    resp = await client.patch(f"/api/orders/{order['id']}/status", json={"status": "picked_up"}, headers=auth(world.courier))
    assert resp.json()["order"]["status"] == "picked_up"


async def test_list_orders_scoped_and_filtered(client, world):
    mine = await create(client, world)
    await create(client, world, user=world.other_customer)

    resp = await client.get("/api/orders", headers=auth(world.customer))
    assert [o["id"] for o in resp.json()["orders"]] == [mine["id"]]

    resp = await client.get("/api/orders?status=pending", headers=auth(world.admin_a))
    assert len(resp.json()["orders"]) == 2

    resp = await client.get("/api/orders", headers=auth(world.admin_b))
    assert resp.json()["orders"] == []

    resp = await client.get("/api/orders?status=bogus", headers=auth(world.admin_a))
    assert resp.status_code == 422


async def test_cancelled_order_is_not_active(client, world):
    order = await create(client, world)
    resp = await client.patch(f"/api/orders/{order['id']}/status", json={"status": "cancelled"}, headers=auth(world.customer))
    assert resp.status_code == 200
    assert resp.json()["order"]["is_active"] is False
    assert resp.json()["order"]["available_transitions"] == []


async def test_courier_cannot_read_foreign_pending_order(client, world):
    order = await create(client, world)
    resp = await client.get(f"/api/orders/{order['id']}", headers=auth(world.courier))
    assert resp.status_code == 403
    assert "address" not in resp.text
