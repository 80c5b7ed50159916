import json
from typing import Any, Dict, Optional, Tuple
from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.config.settings import config_settings
from kmerch.db.dependencies import get_session
from kmerch.orders.dependencies import get_order_lifecycle
from kmerch.orders.exceptions import OrderNotFound
from kmerch.orders.repository import get_order_by_payment_link
from kmerch.orders.services import OrderLifecycle
from kmerch.payments.constants import PAID_EVENT_TYPES, PROVIDER, SIGNATURE_HEADER, logger
from kmerch.payments.paymongo import normalize_method, parse_checkout_payment
from kmerch.payments.repository import mark_webhook_processed, mark_webhook_received, webhook_error_recorded
from kmerch.payments.services import verify_paymongo_signature


def _ack(note: str) -> JSONResponse:
    # anything but a 2xx makes the provider redeliver
    return JSONResponse({"status": "ok", "note": note}, status_code=200)


def _payment_from_resource(resource: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    if resource.get("type") == "payment":
        attrs = resource.get("attributes") or {}
        return attrs.get("status") == "paid", normalize_method((attrs.get("source") or {}).get("type"))
    return parse_checkout_payment(resource)


async def paymongo_webhook(request: Request, session: AsyncSession = Depends(get_session),
                           lifecycle: OrderLifecycle = Depends(get_order_lifecycle)):
    body = await request.body()
    secret = config_settings.PAYMONGO_WEBHOOK_SECRET
    if not secret:
        logger.error("paymongo_webhook.secret_not_configured")
        return _ack("ignored: webhook secret not configured")

    try:
        payload = json.loads(body)
        if not isinstance(payload, dict):
            raise ValueError("webhook body is not a JSON object")
    except ValueError:
        logger.error("paymongo_webhook.malformed_body")
        await mark_webhook_received(session, PROVIDER, None, None, last_error="malformed body")
        await session.commit()
        return _ack("ignored: malformed body")

    event = payload.get("data") or {}
    attrs = event.get("attributes") or {}
    if not verify_paymongo_signature(request.headers.get(SIGNATURE_HEADER), body, secret, bool(attrs.get("livemode"))):
        logger.error("paymongo_webhook.invalid_signature")
        await mark_webhook_received(session, PROVIDER, None, payload, last_error="invalid signature")
        await session.commit()
        return _ack("ignored: invalid signature")

    provider_event_id = event.get("id")
    event_type = attrs.get("type")
    resource = attrs.get("data") or {}
    if not provider_event_id:
        await mark_webhook_received(session, PROVIDER, None, payload, event_type=event_type,
                                    last_error="missing event id")
        await session.commit()
        return _ack("ignored: missing event id")

    order_id = ((resource.get("attributes") or {}).get("metadata") or {}).get("order_id")
    if not order_id and resource.get("id"):
        order = await get_order_by_payment_link(session, resource["id"])
        order_id = order.order_id if order else None

    ev = await mark_webhook_received(session, PROVIDER, provider_event_id, payload,
                                     event_type=event_type, order_id=order_id)
    if ev.processed_at is not None:
        await session.commit()
        return _ack("already processed")

    if event_type not in PAID_EVENT_TYPES:
        await mark_webhook_processed(session, ev.id)
        await session.commit()
        return _ack("ignored: event type")

    if not order_id:
        await mark_webhook_processed(session, ev.id, last_error="no order for event")
        await session.commit()
        return _ack("ignored: order not found")

    # the received event is durable before the order is touched
    await session.commit()

    paid, method = _payment_from_resource(resource)
    try:
        if paid:
            await lifecycle.mark_paid(order_id, method)
        await mark_webhook_processed(session, ev.id, None if paid else "event carried no paid payment")
        await session.commit()
    except OrderNotFound:
        logger.warning("paymongo_webhook.unknown_order", extra={"order_id": order_id})
        await mark_webhook_processed(session, ev.id, last_error="no order for event")
        await session.commit()
        return _ack("ignored: order not found")
    except Exception as exc:
        logger.error("paymongo_webhook.processing_failed",
                     extra={"order_id": order_id, "provider_event_id": provider_event_id}, exc_info=exc)
        await session.rollback()
        await webhook_error_recorded(session, ev.id, f"error while processing webhook: {type(exc).__name__}")
        await session.commit()
        # non 2xx so the provider redelivers
        raise

    logger.info("paymongo_webhook.processed", extra={"order_id": order_id, "paid": paid})
    return _ack("processed")
