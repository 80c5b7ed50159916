from kmerch.common.logging_setup import get_logger

logger = get_logger("kmerch.products")

DEFAULT_CATEGORY = "merch"
