from kmerch.common.logging_setup import get_logger

logger = get_logger("kmerch.payments")

PROVIDER = "paymongo"
CURRENCY = "PHP"
PAYMENT_METHOD_TYPES = ["gcash", "paymaya"]
PAID_EVENT_TYPES = frozenset({"checkout_session.payment.paid", "payment.paid"})

SIGNATURE_HEADER = "Paymongo-Signature"

METHOD_LABELS = {
    "gcash": "GCash",
    "paymaya": "Maya",
    "maya": "Maya",
    "card": "Card",
}
TRUSTED_REDIRECT_METHOD = "PayMongo"

DEFAULT_TIMEOUT = 10.0
DEFAULT_RETRIES = 3
DEFAULT_BACKOFF_BASE = 0.5
