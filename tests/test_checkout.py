from datetime import datetime, timedelta, timezone
import pytest
from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from kmerch.cache import product_cache
from kmerch.orders.checkout import CheckoutService
from kmerch.orders.exceptions import InvalidState, OutOfStock, PaymentUnavailable, PromoRejected
from kmerch.orders.models import CheckoutIn
from kmerch.schema.full_schema import CartItem, Orders, Product, Promo
from tests.conftest import add_product, url_prefix


def checkout_payload(items, **overrides) -> CheckoutIn:
    data = {
        "user_id": "user-1",
        "email": "Mina@Example.com",
        "customer_name": "Mina Sharon",
        "phone": "09171234567",
        "shipping_address": "12 Mabini St, Quezon City",
        "items": items,
        "payment_method": "online",
    }
    data.update(overrides)
    return CheckoutIn(**data)


@pytest.fixture
def checkout_service(lifecycle, session_factory, payment_client, notifier):
    return CheckoutService(lifecycle, session_factory, payment_client, notifier, shipping_fee=0)


async def stock_of(session_factory, product_id: int) -> int:
    async with session_factory() as session:
        return (await session.execute(select(Product.stock).where(Product.id == product_id))).scalar_one()


async def add_promo(session_factory, clock, **kwargs) -> Promo:
    data = {"code": "COMEBACK10", "name": "Comeback Sale", "discount": 10,
            "starts_at": clock() - timedelta(days=1), "ends_at": clock() + timedelta(days=1)}
    data.update(kwargs)
    async with session_factory() as session:
        promo = Promo(**data)
        session.add(promo)
        await session.commit()
        return promo


@pytest.mark.asyncio
async def test_online_checkout_reserves_stock_and_issues_link(checkout_service, session_factory, providers, notifier):
    a = await add_product(session_factory, "Lightstick Ver.3", price=250000, stock=5)
    b = await add_product(session_factory, "Photocard Set", price=35000, stock=2)
    async with session_factory() as session:
        session.add(CartItem(user_id="user-1", product_id=a.id, name=a.name, price=a.price, quantity=1))
        session.add(CartItem(user_id="user-1", product_id=b.id, name=b.name, price=b.price, quantity=2))
        await session.commit()

    result = await checkout_service.checkout(checkout_payload(
        [{"product_id": a.id, "quantity": 1}, {"product_id": b.id, "quantity": 2}]))

    order = result["order"]
    assert result["warnings"] == []
    assert order["subtotal"] == 320000
    assert order["status_label"] == "Pending Payment"
    assert result["payment_link_url"] == "https://checkout.paymongo.test/cs_test_1"
    assert await stock_of(session_factory, a.id) == 4
    assert await stock_of(session_factory, b.id) == 0

    sent = providers.checkout_requests[0]["data"]["attributes"]
    assert sent["metadata"] == {"order_id": order["order_id"]}
    assert sent["success_url"] == f"https://shop.test/order-success?orderId={order['order_id']}"

    async with session_factory() as session:
        assert (await session.execute(select(CartItem))).scalars().all() == []
    assert notifier.queue.qsize() == 1


@pytest.mark.asyncio
async def test_cod_checkout_skips_the_provider(checkout_service, session_factory, providers):
    a = await add_product(session_factory, stock=3)

    result = await checkout_service.checkout(checkout_payload([{"product_id": a.id, "quantity": 1}],
                                                              payment_method="cod"))

    assert result["payment_link_url"] is None
    assert result["order"]["status_label"] == "Processing"
    assert providers.checkout_requests == []


@pytest.mark.asyncio
async def test_duplicate_lines_are_merged(checkout_service, session_factory):
    a = await add_product(session_factory, price=1000, stock=5)

    result = await checkout_service.checkout(checkout_payload(
        [{"product_id": a.id, "quantity": 1}, {"product_id": a.id, "quantity": 2}], payment_method="cod"))

    assert result["order"]["items"][0]["quantity"] == 3
    assert result["order"]["subtotal"] == 3000
    assert await stock_of(session_factory, a.id) == 2


@pytest.mark.asyncio
async def test_short_stock_lists_every_short_item(checkout_service, session_factory):
    a = await add_product(session_factory, "Album", stock=1)
    b = await add_product(session_factory, "Poster", stock=0)

    with pytest.raises(OutOfStock) as exc_info:
        await checkout_service.checkout(checkout_payload(
            [{"product_id": a.id, "quantity": 2}, {"product_id": b.id, "quantity": 1}]))

    short_ids = {i["product_id"] for i in exc_info.value.extra["items"]}
    assert short_ids == {a.id, b.id}
    async with session_factory() as session:
        assert (await session.execute(select(Orders))).scalars().all() == []


@pytest.mark.asyncio
async def test_unknown_product_is_404(checkout_service):
    with pytest.raises(HTTPException) as exc_info:
        await checkout_service.checkout(checkout_payload([{"product_id": 999, "quantity": 1}]))
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_stock_taken_between_snapshot_and_reserve_cancels_order(checkout_service, session_factory,
                                                                      monkeypatch):
    a = await add_product(session_factory, stock=1)

    original_create = checkout_service.lifecycle.create

    async def create_then_sell_out(draft):
        order = await original_create(draft)
        async with session_factory() as session:
            product = await session.get(Product, a.id)
            product.stock = 0
            await session.commit()
        return order

    monkeypatch.setattr(checkout_service.lifecycle, "create", create_then_sell_out)

    with pytest.raises(OutOfStock):
        await checkout_service.checkout(checkout_payload([{"product_id": a.id, "quantity": 1}]))

    async with session_factory() as session:
        order = (await session.execute(select(Orders))).scalar_one()
    assert order.order_status == "cancelled"
    assert order.cancel_reason == "insufficient stock"


@pytest.mark.asyncio
async def test_payment_link_failure_restores_stock_and_cancels(checkout_service, session_factory, providers):
    a = await add_product(session_factory, stock=4)
    providers.create_failures = [502, 502, 502]

    with pytest.raises(PaymentUnavailable) as exc_info:
        await checkout_service.checkout(checkout_payload([{"product_id": a.id, "quantity": 3}]))

    assert exc_info.value.retryable is True
    assert await stock_of(session_factory, a.id) == 4
    async with session_factory() as session:
        order = (await session.execute(select(Orders))).scalar_one()
    assert order.order_status == "cancelled"
    assert order.cancel_reason == "payment link creation failed"


@pytest.mark.asyncio
async def test_transient_provider_error_is_retried(checkout_service, session_factory, providers):
    a = await add_product(session_factory, stock=4)
    providers.create_failures = [503]

    result = await checkout_service.checkout(checkout_payload([{"product_id": a.id, "quantity": 1}]))

    assert result["payment_link_url"].endswith("cs_test_1")
    assert await stock_of(session_factory, a.id) == 3


@pytest.mark.asyncio
async def test_client_error_is_not_retried(checkout_service, session_factory, providers):
    a = await add_product(session_factory, stock=4)
    providers.create_failures = [400]

    with pytest.raises(PaymentUnavailable):
        await checkout_service.checkout(checkout_payload([{"product_id": a.id, "quantity": 1}]))
    assert providers.create_failures == []
    assert providers.checkout_requests == []


@pytest.mark.asyncio
async def test_promo_discount_and_usage(checkout_service, session_factory, clock):
    a = await add_product(session_factory, price=100000, stock=5)
    await add_promo(session_factory, clock, max_discount=5000)

    result = await checkout_service.checkout(checkout_payload([{"product_id": a.id, "quantity": 1}],
                                                              promo_code=" comeback10 ", payment_method="cod"))

    order = result["order"]
    assert order["promo_code"] == "COMEBACK10"
    assert order["discount_percent"] == 10
    assert order["discount_amount"] == 5000
    assert order["final_total"] == 95000
    assert order["amount_due"] == 95000
    async with session_factory() as session:
        promo = (await session.execute(select(Promo))).scalar_one()
    assert promo.used_count == 1


@pytest.mark.asyncio
async def test_rejected_promo_stops_checkout(checkout_service, session_factory, clock):
    a = await add_product(session_factory, price=100000, stock=5)
    await add_promo(session_factory, clock, min_order=500000)

    with pytest.raises(PromoRejected) as exc_info:
        await checkout_service.checkout(checkout_payload([{"product_id": a.id, "quantity": 1}],
                                                         promo_code="COMEBACK10"))
    assert exc_info.value.message == "Minimum order of ₱5,000.00 required for this promo."
    assert await stock_of(session_factory, a.id) == 5


@pytest.mark.asyncio
async def test_best_effort_failures_become_warnings(checkout_service, session_factory, monkeypatch):
    import kmerch.orders.checkout as checkout_mod

    a = await add_product(session_factory, stock=5)

    async def broken_cart_cleanup(*args, **kwargs):
        raise OperationalError("DELETE", {}, Exception("locked"))

    monkeypatch.setattr(checkout_mod, "remove_cart_items", broken_cart_cleanup)
    monkeypatch.setattr(checkout_service.notifier, "enqueue", lambda event, data: False)

    result = await checkout_service.checkout(checkout_payload([{"product_id": a.id, "quantity": 1}],
                                                              payment_method="cod"))

    assert result["order"]["order_status"] == "pending"
    assert result["warnings"] == ["cart_not_cleared", "confirmation_email_not_queued"]


@pytest.mark.asyncio
async def test_continue_payment_reuses_or_issues_link(checkout_service, session_factory, providers):
    a = await add_product(session_factory, stock=5)
    result = await checkout_service.checkout(checkout_payload([{"product_id": a.id, "quantity": 1}]))
    order_id = result["order"]["order_id"]

    reused = await checkout_service.continue_payment(order_id)
    assert reused["reused"] is True
    assert reused["payment_link_url"] == result["payment_link_url"]
    assert len(providers.checkout_requests) == 1


@pytest.mark.asyncio
async def test_continue_payment_only_for_unpaid_online_orders(checkout_service, session_factory):
    a = await add_product(session_factory, stock=5)
    cod = await checkout_service.checkout(checkout_payload([{"product_id": a.id, "quantity": 1}],
                                                           payment_method="cod"))
    with pytest.raises(InvalidState):
        await checkout_service.continue_payment(cod["order"]["order_id"])

    online = await checkout_service.checkout(checkout_payload([{"product_id": a.id, "quantity": 1}]))
    await checkout_service.lifecycle.mark_paid(online["order"]["order_id"], "GCash")
    with pytest.raises(InvalidState):
        await checkout_service.continue_payment(online["order"]["order_id"])


# ---------------------------------------------------------------- over http

@pytest.mark.asyncio
async def test_checkout_endpoint(ac_client, session_factory):
    a = await add_product(session_factory, stock=2)

    r = await ac_client.post(f"{url_prefix}/checkout", json={
        "email": "mina@example.com", "customer_name": "Mina", "shipping_address": "Quezon City",
        "items": [{"product_id": a.id, "quantity": 1}], "payment_method": "cod"})
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["status"] == "ok"
    order_id = body["data"]["order"]["order_id"]

    r = await ac_client.get(f"{url_prefix}/orders/{order_id}")
    assert r.status_code == 200
    assert r.json()["data"]["order"]["status_label"] == "Processing"

    r = await ac_client.get(f"{url_prefix}/orders", params={"email": "MINA@example.com"})
    assert [o["order_id"] for o in r.json()["data"]["items"]] == [order_id]


@pytest.mark.asyncio
async def test_checkout_endpoint_out_of_stock_envelope(ac_client, session_factory):
    a = await add_product(session_factory, stock=0)

    r = await ac_client.post(f"{url_prefix}/checkout", json={
        "email": "mina@example.com", "customer_name": "Mina", "shipping_address": "Quezon City",
        "items": [{"product_id": a.id, "quantity": 1}]})
    assert r.status_code == 409
    body = r.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == "OUT_OF_STOCK"
    assert body["error"]["details"]["items"][0]["product_id"] == a.id


@pytest.mark.asyncio
async def test_checkout_endpoint_rejects_bad_payload(ac_client):
    r = await ac_client.post(f"{url_prefix}/checkout", json={
        "email": "not-an-email", "customer_name": "Mina", "shipping_address": "x", "items": []})
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "UNPROCESSABLE_ENTITY"


@pytest.mark.asyncio
async def test_checkout_refreshes_cached_product_stock(ac_client, session_factory, fake_redis):
    a = await add_product(session_factory, stock=5)

    r = await ac_client.get(f"{url_prefix}/products/{a.id}")
    assert r.json()["data"]["stock"] == 5

    r = await ac_client.post(f"{url_prefix}/checkout", json={
        "email": "mina@example.com", "customer_name": "Mina", "shipping_address": "Quezon City",
        "items": [{"product_id": a.id, "quantity": 3}], "payment_method": "cod"})
    assert r.status_code == 201, r.text

    r = await ac_client.get(f"{url_prefix}/products/{a.id}")
    assert r.json()["data"]["stock"] == 2
@pytest.mark.asyncio
async def test_restored_stock_is_not_served_stale_from_cache(checkout_service, session_factory, providers,
                                                             fake_redis, monkeypatch):
    from kmerch.orders import checkout as checkout_module

    a = await add_product(session_factory, stock=4)
    invalidated = []

    async def record_invalidate(product_id):
        invalidated.append((product_id, await stock_of(session_factory, product_id)))
        await product_cache.invalidate_product(product_id)

    monkeypatch.setattr(checkout_module, "invalidate_product", record_invalidate)
    fake_redis.store[product_cache.product_key(a.id)] = b'{"id": 1, "stock": 4, "version": 1}'
    providers.create_failures = [502, 502, 502]

    with pytest.raises(PaymentUnavailable):
        await checkout_service.checkout(checkout_payload([{"product_id": a.id, "quantity": 3}]))

    # once after the reservation, once after the stock came back
    assert invalidated == [(a.id, 1), (a.id, 4)]
    assert product_cache.product_key(a.id) not in fake_redis.store
