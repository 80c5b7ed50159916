from typing import Any, Dict, List, Optional, Tuple
import httpx
from kmerch.common.retries import is_transient_http_error, retry_async
from kmerch.payments.constants import (CURRENCY, DEFAULT_BACKOFF_BASE, DEFAULT_RETRIES, DEFAULT_TIMEOUT,
                                       METHOD_LABELS, PAYMENT_METHOD_TYPES, logger)
from kmerch.schema.full_schema import Orders


class PaymentProviderError(Exception):
    """Provider call failed for good (after retries, or a 4xx)."""


class PayMongoClient:
    """Thin async client for PayMongo hosted checkout sessions."""

    def __init__(self, secret_key: Optional[str], base_url: str, site_url: str, *,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 timeout: float = DEFAULT_TIMEOUT,
                 retries: int = DEFAULT_RETRIES,
                 backoff_base: float = DEFAULT_BACKOFF_BASE):
        self._secret_key = secret_key
        self._base_url = base_url.rstrip("/")
        self._site_url = site_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout
        self._send = retry_async(attempts=retries, base_delay=backoff_base,
                                 if_retryable=is_transient_http_error)(self._send_once)

    @property
    def configured(self) -> bool:
        return bool(self._secret_key)

    async def _send_once(self, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        async with httpx.AsyncClient(base_url=self._base_url, auth=(self._secret_key, ""),
                                     timeout=self._timeout, transport=self._transport) as client:
            resp = await client.request(method, path, json=payload)
            resp.raise_for_status()
            return resp.json()

    async def _call(self, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        if not self.configured:
            raise PaymentProviderError("payment provider is not configured")
        try:
            return await self._send(method, path, payload)
        except httpx.HTTPStatusError as exc:
            logger.error("paymongo.http_error", extra={"path": path, "http_status": exc.response.status_code,
                                                       "body": exc.response.text[:500]})
            raise PaymentProviderError(f"provider returned {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("paymongo.request_failed", extra={"path": path, "error": str(exc)})
            raise PaymentProviderError(str(exc)) from exc

    def build_checkout_payload(self, order: Orders) -> Dict[str, Any]:
        amount_due = order.final_total if order.final_total is not None else order.total
        line_items: List[Dict[str, Any]]
        if amount_due == sum(int(i["price"]) * int(i["quantity"]) for i in order.items):
            line_items = [{"name": i["name"], "quantity": int(i["quantity"]), "amount": int(i["price"]),
                           "currency": CURRENCY} for i in order.items]
        else:
            # discounts and fees cannot be expressed per line, charge the order as one line
            line_items = [{"name": f"DKMerch Order {order.order_id}", "quantity": 1,
                           "amount": amount_due, "currency": CURRENCY}]

        return {
            "data": {
                "attributes": {
                    "billing": {"name": order.customer_name, "email": order.email, "phone": order.phone},
                    "line_items": line_items,
                    "payment_method_types": PAYMENT_METHOD_TYPES,
                    "description": f"DKMerch Order {order.order_id}",
                    "reference_number": order.order_id,
                    "metadata": {"order_id": order.order_id},
                    "success_url": f"{self._site_url}/order-success?orderId={order.order_id}",
                    "cancel_url": f"{self._site_url}/checkout",
                    "send_email_receipt": False,
                    "show_line_items": True,
                }
            }
        }

    async def create_checkout_session(self, order: Orders) -> Dict[str, str]:
        data = await self._call("POST", "/checkout_sessions", self.build_checkout_payload(order))
        resource = data.get("data") or {}
        link_id = resource.get("id")
        link_url = (resource.get("attributes") or {}).get("checkout_url")
        if not link_id or not link_url:
            raise PaymentProviderError("provider response had no checkout url")
        logger.info("paymongo.checkout_session_created", extra={"order_id": order.order_id, "payment_link_id": link_id})
        return {"payment_link_id": link_id, "payment_link_url": link_url}

    async def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        data = await self._call("GET", f"/checkout_sessions/{session_id}")
        return data.get("data") or {}


def normalize_method(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    return METHOD_LABELS.get(raw.lower(), raw.title())


def parse_checkout_payment(resource: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """(paid, method label) for a checkout_session resource."""
    attrs = resource.get("attributes") or {}
    intent_status = ((attrs.get("payment_intent") or {}).get("attributes") or {}).get("status")
    payments = attrs.get("payments") or []
    paid_payment = next((p for p in payments if (p.get("attributes") or {}).get("status") == "paid"), None)

    paid = attrs.get("status") == "completed" or intent_status == "succeeded" or paid_payment is not None

    method = None
    if paid_payment is not None:
        method = ((paid_payment.get("attributes") or {}).get("source") or {}).get("type")
    method = method or attrs.get("payment_method_used")
    return paid, normalize_method(method)
