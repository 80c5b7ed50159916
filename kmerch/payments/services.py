import hashlib
import hmac
from typing import Any, Dict, Optional
from kmerch.orders.exceptions import InvalidState
from kmerch.orders.services import OrderLifecycle
from kmerch.payments.constants import TRUSTED_REDIRECT_METHOD, logger
from kmerch.payments.paymongo import PayMongoClient, PaymentProviderError, parse_checkout_payment
from kmerch.schema.full_schema import PaymentMethod, PaymentStatus


def parse_signature_header(header: Optional[str]) -> Dict[str, str]:
    parts = {}
    for chunk in (header or "").split(","):
        if "=" in chunk:
            k, v = chunk.split("=", 1)
            parts[k.strip()] = v.strip()
    return parts


def verify_paymongo_signature(header: Optional[str], body: bytes, secret: str, livemode: bool) -> bool:
    """Paymongo-Signature is `t=<ts>,te=<test sig>,li=<live sig>`, each an HMAC-SHA256 of `<t>.<raw body>`."""
    parts = parse_signature_header(header)
    ts = parts.get("t")
    received = parts.get("li") if livemode else parts.get("te")
    if not ts or not received:
        return False
    signed = ts.encode() + b"." + body
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)


async def check_payment_status(lifecycle: OrderLifecycle, client: PayMongoClient, order_id: str,
                               trust_redirect: bool = False) -> Dict[str, Any]:
    """Ask the provider whether an order's checkout session was paid and record it."""
    order = await lifecycle.get(order_id)
    if order.payment_status == PaymentStatus.PAID.value:
        return {"order_id": order_id, "payment_status": order.payment_status,
                "payment_provider_method": order.payment_provider_method, "verified": True}
    if order.payment_method != PaymentMethod.ONLINE.value or not order.payment_link_id:
        raise InvalidState("This order has no online payment to check")

    try:
        resource = await client.retrieve_checkout_session(order.payment_link_id)
    except PaymentProviderError as exc:
        logger.warning("payment_status.lookup_failed", extra={"order_id": order_id, "error": str(exc)})
        if not trust_redirect:
            return {"order_id": order_id, "payment_status": order.payment_status,
                    "payment_provider_method": None, "verified": False}
        order, _ = await lifecycle.mark_paid(order_id, TRUSTED_REDIRECT_METHOD)
        return {"order_id": order_id, "payment_status": order.payment_status,
                "payment_provider_method": order.payment_provider_method, "verified": False}

    paid, method = parse_checkout_payment(resource)
    if paid:
        order, _ = await lifecycle.mark_paid(order_id, method)
    return {"order_id": order_id, "payment_status": order.payment_status,
            "payment_provider_method": order.payment_provider_method, "verified": True}
