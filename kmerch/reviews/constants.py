from kmerch.common.logging_setup import get_logger

logger = get_logger("kmerch.reviews")

MIN_RATING = 1
MAX_RATING = 5

MSG_NOT_FOUND = "Review not found."
MSG_NOT_AUTHORIZED = "Not authorized."
