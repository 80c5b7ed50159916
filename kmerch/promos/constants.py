from datetime import time
from kmerch.common.logging_setup import get_logger

logger = get_logger("kmerch.promos")

DEFAULT_START_TIME = time(0, 0)
DEFAULT_END_TIME = time(23, 59)

MSG_INVALID = "Invalid promo code."
MSG_INACTIVE = "This promo is no longer active."
MSG_NOT_STARTED = "This promo has not started yet."
MSG_EXPIRED = "This promo has expired."
MSG_LIMIT_REACHED = "This promo has reached its usage limit."
MSG_MIN_ORDER = "Minimum order of ₱{amount} required for this promo."
