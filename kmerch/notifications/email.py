from html import escape
from typing import Any, Dict, Optional
import httpx
from kmerch.common.utils import format_pesos
from kmerch.notifications.constants import EMAIL_TIMEOUT, logger


def render_order_confirmation(data: Dict[str, Any], site_url: str) -> str:
    rows = "".join(
        f"<tr><td>{escape(str(i['name']))}</td><td>x{int(i['quantity'])}</td>"
        f"<td>₱{format_pesos(int(i['price']) * int(i['quantity']))}</td></tr>"
        for i in data["items"]
    )
    lines = [f"<p>Subtotal: ₱{format_pesos(data['subtotal'])}</p>"]
    if data.get("promo_code"):
        lines.append(f"<p>Promo {escape(data['promo_code'])} ({escape(data.get('promo_name') or '')}): "
                     f"-₱{format_pesos(data['discount_amount'])}</p>")
    lines.append(f"<p>Shipping: ₱{format_pesos(data['shipping_fee'])}</p>")
    lines.append(f"<p><strong>Total: ₱{format_pesos(data['amount_due'])}</strong></p>")
    track_url = f"{site_url.rstrip('/')}/track-order?orderId={data['order_id']}"
    return (
        f"<h2>Salamat, {escape(data['name'])}!</h2>"
        f"<p>Your order <strong>{escape(data['order_id'])}</strong> has been received.</p>"
        f"<table>{rows}</table>{''.join(lines)}"
        f"<p><a href=\"{escape(track_url)}\">Track your order</a></p>"
    )


class EmailSender:
    """Sends transactional email through the Resend HTTP API."""

    def __init__(self, api_key: Optional[str], api_url: str, sender: str, site_url: str,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._api_key = api_key
        self._api_url = api_url
        self._sender = sender
        self._site_url = site_url
        self._transport = transport

    async def send(self, to: str, subject: str, html: str) -> bool:
        if not self._api_key:
            logger.info("email.not_configured", extra={"subject": subject})
            return False
        headers = {"Authorization": f"Bearer {self._api_key}"}
        payload = {"from": self._sender, "to": [to], "subject": subject, "html": html}
        async with httpx.AsyncClient(timeout=EMAIL_TIMEOUT, transport=self._transport) as client:
            resp = await client.post(self._api_url, json=payload, headers=headers)
            resp.raise_for_status()
        logger.info("email.sent", extra={"subject": subject})
        return True

    async def send_order_confirmation(self, data: Dict[str, Any]) -> bool:
        html = render_order_confirmation(data, self._site_url)
        return await self.send(data["to"], f"Order Confirmed - {data['order_id']}", html)
