import contextvars
from typing import Optional

PH_UTC_OFFSET_HOURS = 8

# Context variables for request id
request_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
