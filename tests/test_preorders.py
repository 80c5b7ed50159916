from datetime import datetime, timedelta, timezone
import pytest
from fastapi import HTTPException
from kmerch.common.utils import now
from kmerch.preorders.models import PreOrderIn
from kmerch.preorders.services import (cancel_pre_order, get_my_pre_orders, has_available_pre_order,
                                       is_product_pre_ordered, mark_added_to_cart, place_pre_order)
from kmerch.schema.full_schema import PreOrderRequest, Product
from tests.conftest import add_product, url_prefix

T0 = datetime(2025, 3, 1, 2, 0, tzinfo=timezone.utc)


def pre_order_in(product_id: int, user_id: str = "user-1") -> PreOrderIn:
    return PreOrderIn(user_id=user_id, product_id=product_id, user_email="Mina@Example.com", user_name="Mina")


@pytest.mark.asyncio
async def test_place_snapshots_the_product(db_session, session_factory):
    p = await add_product(session_factory, "Comeback Album", price=120000, image="album.jpg",
                          is_pre_order=True, release_at=T0 + timedelta(days=3))

    req = await place_pre_order(db_session, pre_order_in(p.id), at=T0)
    assert (req.product_name, req.product_image, req.product_price) == ("Comeback Album", "album.jpg", 120000)
    assert req.release_at == T0 + timedelta(days=3)
    assert req.user_email == "mina@example.com"
    assert req.added_to_cart is False
    assert req.pre_ordered_at == T0


@pytest.mark.asyncio
async def test_place_rejections(db_session, session_factory):
    no_schedule = await add_product(session_factory, "Mystery Box")
    upcoming = await add_product(session_factory, "Album", is_pre_order=True, release_at=T0 + timedelta(days=1))

    with pytest.raises(HTTPException) as exc_info:
        await place_pre_order(db_session, pre_order_in(4040))
    assert (exc_info.value.status_code, exc_info.value.detail) == (404, "Product not found.")

    with pytest.raises(HTTPException) as exc_info:
        await place_pre_order(db_session, pre_order_in(no_schedule.id))
    assert (exc_info.value.status_code, exc_info.value.detail) == (422, "Product has no valid release schedule.")

    await place_pre_order(db_session, pre_order_in(upcoming.id))
    with pytest.raises(HTTPException) as exc_info:
        await place_pre_order(db_session, pre_order_in(upcoming.id))
    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "You already pre-ordered this item for this release slot."

    # a different user is a different request
    await place_pre_order(db_session, pre_order_in(upcoming.id, user_id="user-2"))


@pytest.mark.asyncio
async def test_rescheduled_release_opens_a_new_slot(db_session, session_factory):
    first_slot = T0 + timedelta(days=1)
    second_slot = T0 + timedelta(days=8)
    p = await add_product(session_factory, is_pre_order=True, release_at=first_slot)
    await place_pre_order(db_session, pre_order_in(p.id))

    product = await db_session.get(Product, p.id)
    product.release_at = second_slot
    await db_session.flush()
    await place_pre_order(db_session, pre_order_in(p.id))

    assert await is_product_pre_ordered(db_session, "user-1", p.id) is True
    assert await is_product_pre_ordered(db_session, "user-1", p.id, first_slot) is True
    assert await is_product_pre_ordered(db_session, "user-1", p.id, second_slot) is True
    assert await is_product_pre_ordered(db_session, "user-1", p.id, T0 + timedelta(days=2)) is False
    assert await is_product_pre_ordered(db_session, "user-2", p.id) is False


@pytest.mark.asyncio
async def test_my_pre_orders_lists_available_first(db_session, session_factory):
    released = await add_product(session_factory, "Released", is_pre_order=True, release_at=T0 + timedelta(hours=1))
    later = await add_product(session_factory, "Later", is_pre_order=True, release_at=T0 + timedelta(days=5))
    also_released = await add_product(session_factory, "Also Released", is_pre_order=True,
                                      release_at=T0 + timedelta(hours=2))

    a = await place_pre_order(db_session, pre_order_in(released.id), at=T0)
    b = await place_pre_order(db_session, pre_order_in(later.id), at=T0 + timedelta(minutes=10))
    c = await place_pre_order(db_session, pre_order_in(also_released.id), at=T0 + timedelta(minutes=5))

    rows = await get_my_pre_orders(db_session, "user-1", at=T0 + timedelta(hours=3))
    assert [req.id for req, _ in rows] == [c.id, a.id, b.id]
    assert [product.name for _, product in rows] == ["Also Released", "Released", "Later"]

    # before any release the newest request comes first
    rows = await get_my_pre_orders(db_session, "user-1", at=T0)
    assert [req.id for req, _ in rows] == [b.id, c.id, a.id]


@pytest.mark.asyncio
async def test_availability_follows_the_release_time(db_session, session_factory):
    p = await add_product(session_factory, is_pre_order=True, release_at=T0 + timedelta(hours=1))
    req = await place_pre_order(db_session, pre_order_in(p.id), at=T0)
    await db_session.commit()

    assert await has_available_pre_order(db_session, "user-1", at=T0) is False
    assert await has_available_pre_order(db_session, "user-1", at=T0 + timedelta(hours=1)) is True

    await mark_added_to_cart(db_session, req.id)
    await db_session.commit()
    assert await has_available_pre_order(db_session, "user-1", at=T0 + timedelta(hours=1)) is False


@pytest.mark.asyncio
async def test_cancel_deletes_the_request(db_session, session_factory):
    p = await add_product(session_factory, is_pre_order=True, release_at=T0 + timedelta(days=1))
    req = await place_pre_order(db_session, pre_order_in(p.id))

    await cancel_pre_order(db_session, req.id)
    assert await db_session.get(PreOrderRequest, req.id) is None
    assert await is_product_pre_ordered(db_session, "user-1", p.id) is False

    with pytest.raises(HTTPException) as exc_info:
        await cancel_pre_order(db_session, req.id)
    assert exc_info.value.status_code == 404
    with pytest.raises(HTTPException):
        await mark_added_to_cart(db_session, req.id)


@pytest.mark.asyncio
async def test_pre_order_endpoints(ac_client, session_factory):
    released = await add_product(session_factory, "Released", is_pre_order=True,
                                 release_at=now() - timedelta(minutes=1))
    upcoming = await add_product(session_factory, "Upcoming", is_pre_order=True, release_at=now() + timedelta(days=2))
    body = {"user_id": "user-1", "user_email": "mina@example.com", "user_name": "Mina"}

    r = await ac_client.post(f"{url_prefix}/pre-orders", json={**body, "product_id": upcoming.id})
    assert r.status_code == 201, r.text
    assert r.json()["data"]["pre_order"]["is_available"] is False

    r = await ac_client.post(f"{url_prefix}/pre-orders", json={**body, "product_id": upcoming.id})
    assert r.status_code == 409

    r = await ac_client.post(f"{url_prefix}/pre-orders", json={**body, "product_id": released.id})
    assert r.status_code == 201
    released_request = r.json()["data"]["pre_order"]["id"]

    r = await ac_client.get(f"{url_prefix}/pre-orders/users/user-1")
    items = r.json()["data"]["items"]
    assert [(i["product_name"], i["is_available"]) for i in items] == [("Released", True), ("Upcoming", False)]
    assert items[0]["product"]["id"] == released.id

    r = await ac_client.get(f"{url_prefix}/pre-orders/users/user-1/has-available")
    assert r.json()["data"]["has_available"] is True

    r = await ac_client.post(f"{url_prefix}/pre-orders/{released_request}/added-to-cart")
    assert r.status_code == 200
    assert r.json()["data"]["pre_order"]["added_to_cart"] is True
    r = await ac_client.get(f"{url_prefix}/pre-orders/users/user-1/has-available")
    assert r.json()["data"]["has_available"] is False

    r = await ac_client.get(f"{url_prefix}/pre-orders/users/user-1/products/{upcoming.id}")
    assert r.json()["data"]["pre_ordered"] is True

    r = await ac_client.delete(f"{url_prefix}/pre-orders/{released_request}")
    assert r.status_code == 200
    r = await ac_client.get(f"{url_prefix}/pre-orders/users/user-1/products/{released.id}")
    assert r.json()["data"]["pre_ordered"] is False
