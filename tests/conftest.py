import os

# settings are read at import time, point them at throwaway resources first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ.setdefault("PAYMONGO_SECRET_KEY", "sk_test_kmerch")
os.environ.setdefault("PAYMONGO_WEBHOOK_SECRET", "whsk_test_kmerch")
os.environ.setdefault("UPLOAD_SECRET_KEY", "upload-secret-for-tests")

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import httpx
import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from kmerch.db.dependencies import get_session, get_session_factory
from kmerch.main import create_app
from kmerch.notifications.dispatcher import NotificationDispatcher
from kmerch.notifications.email import EmailSender
from kmerch.orders.dependencies import get_order_lifecycle
from kmerch.orders.events import OrderEventBus
from kmerch.orders.models import LineItem, OrderDraft
from kmerch.orders.services import OrderLifecycle
from kmerch.payments.paymongo import PayMongoClient
from kmerch.schema.full_schema import Product, StoredFile
import kmerch.schema.full_schema  # noqa: F401

url_prefix = "/api/v1"

FIXED_OTP = "4821"


class FakeClock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeRedis:
    """Dict backed stand-in for the few redis calls the product cache makes. Expiry is ignored."""

    def __init__(self):
        self.store: Dict[str, Any] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def delete(self, *keys):
        return sum(1 for k in keys if self.store.pop(k, None) is not None)

    async def eval(self, script, numkeys, *args):
        keys, argv = args[:numkeys], args[numkeys:]
        if numkeys == 1:
            # lock release: delete only when the token still matches
            if self.store.get(keys[0]) == argv[0]:
                del self.store[keys[0]]
                return 1
            return 0
        # versioned set
        if int(argv[1]) >= int(self.store.get(keys[1], "0")):
            self.store[keys[0]] = argv[0]
            self.store[keys[1]] = argv[1]
            return 1
        return 0


class FakeProviders:
    """Stands in for the PayMongo and Resend HTTP APIs behind an httpx.MockTransport."""

    def __init__(self):
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.checkout_requests: List[Dict[str, Any]] = []
        self.emails: List[Dict[str, Any]] = []
        self.create_failures: List[int] = []   # status codes answered before succeeding
        self.retrieve_status = 200

    def pay(self, session_id: str, method: str = "gcash") -> None:
        attrs = self.sessions[session_id]["attributes"]
        attrs["status"] = "completed"
        attrs["payments"] = [{"id": "pay_1", "attributes": {"status": "paid", "source": {"type": method}}}]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/emails"):
            self.emails.append(json.loads(request.content))
            return httpx.Response(200, json={"id": f"email_{len(self.emails)}"})

        if request.method == "POST" and path.endswith("/checkout_sessions"):
            if self.create_failures:
                return httpx.Response(self.create_failures.pop(0), json={"errors": [{"detail": "boom"}]})
            body = json.loads(request.content)
            self.checkout_requests.append(body)
            sid = f"cs_test_{len(self.sessions) + 1}"
            self.sessions[sid] = {
                "id": sid,
                "type": "checkout_session",
                "attributes": {
                    "checkout_url": f"https://checkout.paymongo.test/{sid}",
                    "status": "active",
                    "payments": [],
                    "metadata": body["data"]["attributes"]["metadata"],
                },
            }
            return httpx.Response(200, json={"data": self.sessions[sid]})

        if request.method == "GET" and "/checkout_sessions/" in path:
            if self.retrieve_status != 200:
                return httpx.Response(self.retrieve_status, json={"errors": [{"detail": "down"}]})
            sid = path.rsplit("/", 1)[-1]
            if sid not in self.sessions:
                return httpx.Response(404, json={"errors": [{"detail": "not found"}]})
            return httpx.Response(200, json={"data": self.sessions[sid]})

        return httpx.Response(404, json={"errors": [{"detail": f"unexpected {request.method} {path}"}]})


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool,
                                 connect_args={"check_same_thread": False})
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 2, 0, tzinfo=timezone.utc))


@pytest.fixture
def events():
    return OrderEventBus()


@pytest.fixture
def lifecycle(session_factory, events, clock):
    return OrderLifecycle(session_factory, events=events, clock=clock, otp_factory=lambda: FIXED_OTP)


@pytest.fixture
def fake_redis(monkeypatch):
    from kmerch.cache import product_cache

    redis_client = FakeRedis()
    monkeypatch.setattr(product_cache, "get_redis", lambda: redis_client)
    return redis_client


@pytest.fixture
def providers():
    return FakeProviders()


@pytest.fixture
def transport(providers):
    return httpx.MockTransport(providers.handler)


@pytest.fixture
def payment_client(transport):
    return PayMongoClient("sk_test_kmerch", "https://api.paymongo.test/v1", "https://shop.test",
                          transport=transport, backoff_base=0.0)


@pytest.fixture
def notifier(transport):
    sender = EmailSender("re_test_key", "https://api.resend.test/emails", "DKMerch <shop@test>",
                         "https://shop.test", transport=transport)
    return NotificationDispatcher(sender, workers_count=1)


@pytest.fixture
async def app(session_factory, events, clock, payment_client, notifier, tmp_path, monkeypatch):
    from kmerch.config.settings import config_settings

    monkeypatch.setattr(config_settings, "MEDIA_ROOT", str(tmp_path / "media"))
    app = create_app()
    app.state.order_events = events
    app.state.payment_client = payment_client
    app.state.notifier = notifier

    async def override_session():
        async with session_factory() as session:
            yield session

    async def override_session_factory():
        yield session_factory

    def override_lifecycle():
        return OrderLifecycle(session_factory, events=events, clock=clock, otp_factory=lambda: FIXED_OTP)

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_session_factory] = override_session_factory
    app.dependency_overrides[get_order_lifecycle] = override_lifecycle
    return app


@pytest.fixture
async def ac_client(app):
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac


# ---------------------------------------------------------------- data helpers

async def add_product(session_factory, name: str = "Lightstick Ver.3", price: int = 250000,
                      stock: int = 10, **kwargs) -> Product:
    async with session_factory() as session:
        product = Product(name=name, price=price, stock=stock, **kwargs)
        session.add(product)
        await session.commit()
        return product


async def add_stored_file(session_factory, storage_id: str = "photo-1") -> StoredFile:
    async with session_factory() as session:
        stored = StoredFile(storage_id=storage_id, content_type="image/png", size_bytes=3, path="/dev/null")
        session.add(stored)
        await session.commit()
        return stored


def make_draft(payment_method: str = "cod", promo_code: Optional[str] = None, discount_amount: int = 0,
               email: str = "Mina@Example.com", subtotal: int = 250000, shipping_fee: int = 0) -> OrderDraft:
    return OrderDraft(
        email=email,
        customer_name="Mina Sharon",
        phone="09171234567",
        shipping_address="12 Mabini St, Quezon City",
        items=[LineItem(product_id=1, name="Lightstick Ver.3", price=subtotal, quantity=1)],
        subtotal=subtotal,
        shipping_fee=shipping_fee,
        discount_amount=discount_amount,
        discount_percent=10 if promo_code else None,
        promo_code=promo_code,
        promo_name="Comeback Sale" if promo_code else None,
        payment_method=payment_method,
    )


async def deliver(lifecycle: OrderLifecycle, payment_method: str = "cod"):
    """Walk a fresh order to completed and return it."""
    order = await lifecycle.create(make_draft(payment_method=payment_method))
    await lifecycle.transition(order.order_id, "confirmed")
    await lifecycle.assign_rider(order.order_id, "rider-1", "Jun")
    await lifecycle.start_delivery(order.order_id, "rider-1")
    otp = await lifecycle.generate_delivery_otp(order.order_id)
    assert await lifecycle.verify_delivery_otp(order.order_id, otp) is True
    return await lifecycle.get(order.order_id)
