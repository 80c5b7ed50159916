from kmerch.common.logging_setup import get_logger

logger = get_logger("kmerch.uploads")

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}
UPLOAD_PATH_PREFIX = "/uploads"
