from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from kmerch.orders.utils import can_refund, refund_deadline, status_label
from kmerch.schema.full_schema import Orders, PaymentMethod


class LineItem(BaseModel):
    product_id: int
    name: str
    price: int = Field(..., ge=0, description="Unit price in centavos")
    image: Optional[str] = None
    quantity: int = Field(..., ge=1)
    is_pre_order: bool = False
    release_at: Optional[datetime] = None


class OrderDraft(BaseModel):
    """Everything the lifecycle needs to persist a new order. Stock is checked by the caller."""
    email: str
    customer_name: str
    phone: Optional[str] = None
    shipping_address: str
    notes: Optional[str] = None
    items: List[LineItem]
    subtotal: int = Field(..., ge=0)
    shipping_fee: int = Field(0, ge=0)
    discount_amount: int = Field(0, ge=0)
    discount_percent: Optional[int] = None
    promo_code: Optional[str] = None
    promo_name: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.COD


class RefundRequestIn(BaseModel):
    # loose on purpose, the lifecycle reports missing fields as INVALID_INPUT
    photo_id: Optional[str] = None
    method: Optional[str] = None
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    comment: Optional[str] = None


class TransitionIn(BaseModel):
    status: str
    reason: Optional[str] = None


class RefundDecisionIn(BaseModel):
    decision: str
    admin_note: Optional[str] = None


class OtpVerifyIn(BaseModel):
    otp: str
    proof_photo_id: Optional[str] = None


class CheckoutItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)


class CheckoutIn(BaseModel):
    user_id: Optional[str] = Field(None, max_length=128)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=320)
    customer_name: str = Field(..., min_length=1, max_length=128)
    phone: Optional[str] = Field(None, max_length=32)
    shipping_address: str = Field(..., min_length=1)
    notes: Optional[str] = None
    items: List[CheckoutItemIn] = Field(..., min_length=1)
    promo_code: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.ONLINE

    model_config = {"extra": "forbid"}


def serialize_order(order: Orders, at: datetime, refund_window: timedelta) -> Dict[str, Any]:
    """Public view of an order. The delivery otp itself is only handed out by the otp endpoint."""
    deadline = refund_deadline(order, refund_window)
    return {
        "order_id": order.order_id,
        "email": order.email,
        "customer_name": order.customer_name,
        "phone": order.phone,
        "shipping_address": order.shipping_address,
        "notes": order.notes,
        "items": order.items,
        "subtotal": order.subtotal,
        "shipping_fee": order.shipping_fee,
        "discount_amount": order.discount_amount,
        "discount_percent": order.discount_percent,
        "promo_code": order.promo_code,
        "promo_name": order.promo_name,
        "total": order.total,
        "final_total": order.final_total,
        "amount_due": order.final_total if order.final_total is not None else order.total,
        "order_status": order.order_status,
        "status_label": status_label(order),
        "cancel_reason": order.cancel_reason,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status,
        "payment_provider_method": order.payment_provider_method,
        "payment_link_url": order.payment_link_url,
        "paid_at": _iso(order.paid_at),
        "rider_id": order.rider_id,
        "rider_name": order.rider_name,
        "confirmed_at": _iso(order.confirmed_at),
        "shipped_at": _iso(order.shipped_at),
        "out_for_delivery_at": _iso(order.out_for_delivery_at),
        "delivery_confirmed_at": _iso(order.delivery_confirmed_at),
        "cancelled_at": _iso(order.cancelled_at),
        "has_delivery_otp": order.delivery_otp is not None,
        "delivery_otp_verified": order.delivery_otp_verified,
        "delivery_proof_photo": order.delivery_proof_photo,
        "refund_status": order.refund_status,
        "refund_photo_id": order.refund_photo_id,
        "refund_method": order.refund_method,
        "refund_account_name": order.refund_account_name,
        "refund_account_number": order.refund_account_number,
        "refund_comment": order.refund_comment,
        "refund_admin_note": order.refund_admin_note,
        "refund_requested_at": _iso(order.refund_requested_at),
        "refund_decided_at": _iso(order.refund_decided_at),
        "can_refund": can_refund(order, at, refund_window),
        "refund_deadline": _iso(deadline),
        "created_at": _iso(order.created_at),
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
