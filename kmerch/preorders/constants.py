from kmerch.common.logging_setup import get_logger

logger = get_logger("kmerch.preorders")

MSG_PRODUCT_NOT_FOUND = "Product not found."
MSG_DUPLICATE = "You already pre-ordered this item for this release slot."
MSG_NO_SCHEDULE = "Product has no valid release schedule."
MSG_NOT_FOUND = "Pre-order request not found."
