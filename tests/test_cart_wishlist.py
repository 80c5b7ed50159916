import pytest
from tests.conftest import add_product, url_prefix

CART = f"{url_prefix}/cart/user-1"
WISHLIST = f"{url_prefix}/wishlist/user-1"


@pytest.mark.asyncio
async def test_add_snapshots_and_increments(ac_client, session_factory):
    p = await add_product(session_factory, "Album", price=90000, stock=5, image="album.jpg")

    r = await ac_client.post(f"{CART}/items", json={"product_id": p.id})
    assert r.status_code == 201
    assert r.json()["data"]["item"]["image"] == "album.jpg"

    r = await ac_client.post(f"{CART}/items", json={"product_id": p.id, "quantity": 2})
    assert r.status_code == 200
    assert r.json()["data"]["item"]["quantity"] == 3

    r = await ac_client.get(CART)
    data = r.json()["data"]
    assert data["item_count"] == 3
    assert data["subtotal"] == 270000


@pytest.mark.asyncio
async def test_out_of_stock_product_cannot_be_added(ac_client, session_factory):
    p = await add_product(session_factory, stock=0)
    r = await ac_client.post(f"{CART}/items", json={"product_id": p.id})
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_quantity_zero_removes_and_clear(ac_client, session_factory):
    a = await add_product(session_factory, "A", stock=5)
    b = await add_product(session_factory, "B", stock=5)
    await ac_client.post(f"{CART}/items", json={"product_id": a.id})
    await ac_client.post(f"{CART}/items", json={"product_id": b.id})

    r = await ac_client.patch(f"{CART}/items/{a.id}", json={"quantity": 0})
    assert r.json()["data"]["removed"] is True

    r = await ac_client.patch(f"{CART}/items/{b.id}", json={"quantity": 4})
    assert r.json()["data"]["item"]["quantity"] == 4

    r = await ac_client.delete(CART)
    assert r.json()["data"]["removed"] == 1
    r = await ac_client.get(CART)
    assert r.json()["data"]["items"] == []


@pytest.mark.asyncio
async def test_remove_single_item(ac_client, session_factory):
    p = await add_product(session_factory, stock=5)
    await ac_client.post(f"{CART}/items", json={"product_id": p.id})

    r = await ac_client.delete(f"{CART}/items/{p.id}")
    assert r.json()["data"]["removed"] == 1


@pytest.mark.asyncio
async def test_wishlist_toggle(ac_client, session_factory):
    p = await add_product(session_factory, "Poster")

    r = await ac_client.post(f"{WISHLIST}/toggle", json={"product_id": p.id})
    assert r.json()["data"]["wishlisted"] is True
    r = await ac_client.get(f"{WISHLIST}/items/{p.id}")
    assert r.json()["data"]["wishlisted"] is True
    r = await ac_client.get(WISHLIST)
    assert [x["name"] for x in r.json()["data"]["items"]] == ["Poster"]

    r = await ac_client.post(f"{WISHLIST}/toggle", json={"product_id": p.id})
    assert r.json()["data"]["wishlisted"] is False

    await ac_client.post(f"{WISHLIST}/toggle", json={"product_id": p.id})
    r = await ac_client.delete(f"{WISHLIST}/items/{p.id}")
    assert r.json()["data"]["removed"] == 1


@pytest.mark.asyncio
async def test_wishlist_unknown_product(ac_client):
    r = await ac_client.post(f"{WISHLIST}/toggle", json={"product_id": 999})
    assert r.status_code == 404
