from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse
from kmerch.common.utils import success_response
from kmerch.config.settings import config_settings
from kmerch.orders.checkout import CheckoutService
from kmerch.orders.dependencies import (get_checkout_service, get_order_events, get_order_lifecycle,
                                        get_payment_client)
from kmerch.orders.events import OrderEventBus, stream_order_events
from kmerch.orders.models import CheckoutIn, OtpVerifyIn, RefundDecisionIn, RefundRequestIn, TransitionIn
from kmerch.orders.services import OrderLifecycle
from kmerch.payments.paymongo import PayMongoClient
from kmerch.payments.services import check_payment_status
from kmerch.riders.dependencies import get_rider_service
from kmerch.riders.models import serialize_location
from kmerch.riders.services import RiderService

orders_router = APIRouter()
orders_admin_router = APIRouter()


@orders_router.post("/checkout")
async def checkout(payload: CheckoutIn, checkout_service: CheckoutService = Depends(get_checkout_service)):
    result = await checkout_service.checkout(payload)
    return success_response(result, status_code=status.HTTP_201_CREATED)


@orders_router.get("/orders")
async def customer_orders(email: str = Query(..., min_length=3, max_length=320),
                          lifecycle: OrderLifecycle = Depends(get_order_lifecycle)):
    rows = await lifecycle.list_for_customer(email)
    return success_response({"items": [lifecycle.serialize(o) for o in rows]})


@orders_router.get("/orders/{order_id}")
async def order_details(order_id: str, lifecycle: OrderLifecycle = Depends(get_order_lifecycle)):
    order = await lifecycle.get(order_id)
    return success_response({"order": lifecycle.serialize(order)})


@orders_router.get("/orders/{order_id}/events")
async def order_events(order_id: str, request: Request,
                       lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
                       events: OrderEventBus = Depends(get_order_events)):
    await lifecycle.get(order_id)
    return StreamingResponse(stream_order_events(events, order_id, request.is_disconnected),
                             media_type="text/event-stream",
                             headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"})


@orders_router.post("/orders/{order_id}/payment-link")
async def continue_payment(order_id: str, checkout_service: CheckoutService = Depends(get_checkout_service)):
    result = await checkout_service.continue_payment(order_id)
    return success_response(result)


@orders_router.post("/orders/{order_id}/payment-status")
async def payment_status(order_id: str, lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
                         payment_client: PayMongoClient = Depends(get_payment_client)):
    result = await check_payment_status(lifecycle, payment_client, order_id,
                                        trust_redirect=config_settings.TRUST_PAYMENT_REDIRECT)
    return success_response(result)


@orders_router.post("/orders/{order_id}/delivery-otp")
async def delivery_otp(order_id: str, lifecycle: OrderLifecycle = Depends(get_order_lifecycle)):
    otp = await lifecycle.generate_delivery_otp(order_id)
    return success_response({"order_id": order_id, "otp": otp})


@orders_router.post("/orders/{order_id}/delivery-otp/verify")
async def verify_delivery_otp(order_id: str, payload: OtpVerifyIn,
                              lifecycle: OrderLifecycle = Depends(get_order_lifecycle)):
    verified = await lifecycle.verify_delivery_otp(order_id, payload.otp, payload.proof_photo_id)
    order = await lifecycle.get(order_id)
    return success_response({"verified": verified, "order": lifecycle.serialize(order)})


@orders_router.post("/orders/{order_id}/refund")
async def request_refund(order_id: str, payload: RefundRequestIn,
                         lifecycle: OrderLifecycle = Depends(get_order_lifecycle)):
    order = await lifecycle.request_refund(order_id, payload)
    return success_response({"order": lifecycle.serialize(order)})


@orders_router.get("/orders/{order_id}/rider-location")
async def rider_location(order_id: str, riders: RiderService = Depends(get_rider_service)):
    loc = await riders.get_location(order_id)
    return success_response({"location": serialize_location(loc) if loc else None})


@orders_admin_router.get("")
async def admin_list_orders(status_filter: Optional[str] = Query(None, alias="status"),
                            limit: int = Query(100, ge=1, le=500),
                            offset: int = Query(0, ge=0),
                            lifecycle: OrderLifecycle = Depends(get_order_lifecycle)):
    rows = await lifecycle.list_all(status_filter, limit=limit, offset=offset)
    return success_response({"items": [lifecycle.serialize(o) for o in rows], "limit": limit, "offset": offset})


@orders_admin_router.post("/{order_id}/status")
async def admin_transition(order_id: str, payload: TransitionIn,
                           lifecycle: OrderLifecycle = Depends(get_order_lifecycle)):
    order = await lifecycle.transition(order_id, payload.status, reason=payload.reason)
    return success_response({"order": lifecycle.serialize(order)})


@orders_admin_router.post("/{order_id}/refund-decision")
async def admin_refund_decision(order_id: str, payload: RefundDecisionIn,
                                lifecycle: OrderLifecycle = Depends(get_order_lifecycle)):
    order = await lifecycle.decide_refund(order_id, payload.decision, payload.admin_note)
    return success_response({"order": lifecycle.serialize(order)})
