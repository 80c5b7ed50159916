import re
from kmerch.common.logging_setup import get_logger
from kmerch.schema.full_schema import OrderStatus

logger = get_logger("kmerch.orders")

ORDER_ID_PREFIX = "DK"
ORDER_ID_SUFFIX_LEN = 6
ORDER_ID_INSERT_ATTEMPTS = 5

OTP_MIN = 1000
OTP_MAX = 9999

ACCOUNT_NUMBER_RE = re.compile(r"^\d{10,11}$")

# forward edges only, cancellation is handled separately
NEXT_STATUS = {
    OrderStatus.PENDING: OrderStatus.CONFIRMED,
    OrderStatus.CONFIRMED: OrderStatus.SHIPPED,
    OrderStatus.SHIPPED: OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.OUT_FOR_DELIVERY: OrderStatus.COMPLETED,
}

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.SHIPPED})

STATUS_TIMESTAMP_FIELD = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.OUT_FOR_DELIVERY: "out_for_delivery_at",
    OrderStatus.COMPLETED: "delivery_confirmed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

STATUS_LABELS = {
    OrderStatus.CONFIRMED: "Confirmed",
    OrderStatus.SHIPPED: "Shipped",
    OrderStatus.OUT_FOR_DELIVERY: "Out for Delivery",
    OrderStatus.COMPLETED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
}
PENDING_PAYMENT_LABEL = "Pending Payment"
PROCESSING_LABEL = "Processing"

ORDER_EVENT_QUEUE_SIZE = 50
ORDER_EVENT_KEEPALIVE_SECONDS = 15
