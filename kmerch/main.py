from contextlib import asynccontextmanager
from typing import Optional
import httpx
from fastapi import Depends, FastAPI
from sqlmodel import SQLModel
from kmerch.api import cur_version, version_prefix
from kmerch.api.routers import admin_routers, public_routers
from kmerch.cache._cache import close_redis
from kmerch.common.custom_exceptions import register_all_exceptions
from kmerch.common.logging_setup import setup_logging, stop_logging
from kmerch.config.admin_config import admin_config
from kmerch.config.settings import config_settings
from kmerch.db.connection import async_engine
from kmerch.db.dependencies import get_session
from kmerch.middlewares.request_id_middleware import RequestIdMiddleware
from kmerch.notifications.dispatcher import NotificationDispatcher
from kmerch.notifications.email import EmailSender
from kmerch.orders.events import OrderEventBus
from kmerch.payments.paymongo import PayMongoClient
from kmerch.payments.webhooks import paymongo_webhook
import kmerch.schema.full_schema  # noqa: F401  registers the tables on SQLModel.metadata

paymongo_webhook_path = f"{version_prefix}{config_settings.PAYMONGO_WEBHOOK_PATH}"


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    setup_logging()
    if config_settings.AUTO_CREATE_TABLES:
        async with async_engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    app.state.notifier.start()
    try:
        yield
    finally:
        # new requests are no longer accepted at this point
        await app.state.notifier.shutdown()
        await close_redis()
        await async_engine.dispose()
        stop_logging()


def create_app(http_transport: Optional[httpx.AsyncBaseTransport] = None):
    """`http_transport` replaces the network for the payment and email clients (tests)."""
    app=FastAPI(
        title="DKMerch",
        version=cur_version,
        lifespan=app_lifespan)

    app.state.order_events = OrderEventBus()
    app.state.payment_client = PayMongoClient(config_settings.PAYMONGO_SECRET_KEY, config_settings.PAYMONGO_API_URL,
                                              config_settings.SITE_URL, transport=http_transport)
    email_sender = EmailSender(config_settings.RESEND_API_KEY, config_settings.RESEND_API_URL,
                               config_settings.EMAIL_FROM, config_settings.SITE_URL, transport=http_transport)
    app.state.notifier = NotificationDispatcher(email_sender, workers_count=config_settings.NOTIFICATION_WORKERS)

    app.include_router(public_routers)

    app.add_api_route(paymongo_webhook_path, paymongo_webhook, methods=["POST"], name="paymongo_webhook",
                      tags=["webhooks"], dependencies=[Depends(get_session)])

    if admin_config.ENABLE_ADMIN:
        if admin_config.ENV == "prod" and not admin_config.ADMIN_SECRET:
            raise RuntimeError("Unsafe configuration: ENABLE_ADMIN=true in prod requires ADMIN_SECRET")
        app.include_router(admin_routers)      # mounts /api/v1/admin

    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app

app=create_app()
