import random
import re
import secrets
import string
import time
from datetime import datetime, timedelta
from typing import Optional
from kmerch.common.utils import as_utc
from kmerch.orders.constants import (ORDER_ID_PREFIX, ORDER_ID_SUFFIX_LEN, OTP_MAX, OTP_MIN,
                                     PENDING_PAYMENT_LABEL, PROCESSING_LABEL, STATUS_LABELS)
from kmerch.schema.full_schema import OrderStatus, Orders, PaymentMethod, PaymentStatus

_BASE36 = string.digits + string.ascii_uppercase


def generate_order_id(epoch_ms: Optional[int] = None) -> str:
    """DK-<epoch ms>-<6 random base36 chars>. Not guaranteed unique, the unique index is."""
    if epoch_ms is None:
        epoch_ms = int(time.time() * 1000)
    suffix = "".join(random.choices(_BASE36, k=ORDER_ID_SUFFIX_LEN))
    return f"{ORDER_ID_PREFIX}-{epoch_ms}-{suffix}"


def generate_otp() -> str:
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


def normalize_account_number(value: Optional[str]) -> str:
    return re.sub(r"\s+", "", value or "")


def status_label(order: Orders) -> str:
    status = OrderStatus(order.order_status)
    if status == OrderStatus.PENDING:
        awaiting_payment = (order.payment_method == PaymentMethod.ONLINE.value
                            and order.payment_status != PaymentStatus.PAID.value)
        return PENDING_PAYMENT_LABEL if awaiting_payment else PROCESSING_LABEL
    return STATUS_LABELS[status]


def refund_deadline(order: Orders, window: timedelta) -> Optional[datetime]:
    delivered_at = as_utc(order.delivery_confirmed_at)
    if delivered_at is None:
        return None
    return delivered_at + window


def can_refund(order: Orders, at: datetime, window: timedelta) -> bool:
    """Eligibility is evaluated lazily on every read, there is no expiry job."""
    if order.order_status != OrderStatus.COMPLETED.value:
        return False
    deadline = refund_deadline(order, window)
    return deadline is not None and at < deadline
