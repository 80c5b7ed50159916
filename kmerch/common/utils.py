from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, Optional, Union

from fastapi.responses import JSONResponse

from kmerch.common.constants import PH_UTC_OFFSET_HOURS, request_id_ctx

PH_TZ = timezone(timedelta(hours=PH_UTC_OFFSET_HOURS))


def now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands back naive datetimes, everything we write is utc
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ph_local_to_utc(date_str: str, time_str: Optional[str] = None, default_time: time = time(0, 0)) -> datetime:
    """Combine a 'YYYY-MM-DD' date and optional 'HH:MM' time given in Philippine time into aware UTC."""
    d = datetime.strptime(date_str, "%Y-%m-%d").date()
    t = datetime.strptime(time_str, "%H:%M").time() if time_str else default_time
    return datetime.combine(d, t, tzinfo=PH_TZ).astimezone(timezone.utc)


def build_success(data: Any,
                  trace_id: Optional[str] = None, request_id: Optional[str] = None,) -> Dict[str, Any]:
    return {
        "status": "ok",
        "data": data,
        "error": None,
        "trace_id": trace_id,
        "request_id": request_id,
    }

def build_error(code: Union[str, int] = "UNKNOWN_ERROR",
                details: Optional[Any] = None,
                request_id: Optional[str] = None,
                trace_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "status": "error",
        "data": None,
        "error": {"code": code, "details": details},
        "trace_id": trace_id,
        "request_id": request_id,
    }

def json_ok(content: Dict[str, Any], status_code: int = 200, headers=None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=headers)

def json_error(content: Dict[str, Any], status_code: int = 500, headers=None) -> JSONResponse:
    return JSONResponse(content, status_code=status_code, headers=headers)

def success_response(data: Any, status_code: int = 200, headers: Optional[Dict[str, Any]] = None,
                     trace_id: Optional[str] = None) -> JSONResponse:
    content = build_success(data, request_id=request_id_ctx.get(None), trace_id=trace_id)
    return json_ok(content, status_code=status_code, headers=headers)


def format_pesos(centavos: int) -> str:
    return f"{centavos / 100:,.2f}"
