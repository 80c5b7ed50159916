from kmerch.common.logging_setup import get_logger

logger = get_logger("kmerch.notifications")

ORDER_CONFIRMATION = "order_confirmation"

DEFAULT_QUEUE_SIZE = 1000
EMAIL_TIMEOUT = 10.0
