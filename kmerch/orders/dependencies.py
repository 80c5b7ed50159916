from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import async_sessionmaker
from kmerch.db.dependencies import get_session_factory
from kmerch.notifications.dispatcher import NotificationDispatcher
from kmerch.orders.checkout import CheckoutService
from kmerch.orders.events import OrderEventBus
from kmerch.orders.services import OrderLifecycle
from kmerch.payments.paymongo import PayMongoClient


def get_order_events(request: Request) -> OrderEventBus:
    return request.app.state.order_events


def get_order_lifecycle(request: Request,
                        session_factory: async_sessionmaker = Depends(get_session_factory)) -> OrderLifecycle:
    return OrderLifecycle(session_factory, events=request.app.state.order_events)


def get_payment_client(request: Request) -> PayMongoClient:
    return request.app.state.payment_client


def get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier


def get_checkout_service(lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
                         session_factory: async_sessionmaker = Depends(get_session_factory),
                         payment_client: PayMongoClient = Depends(get_payment_client),
                         notifier: NotificationDispatcher = Depends(get_notifier)) -> CheckoutService:
    return CheckoutService(lifecycle, session_factory, payment_client, notifier)
