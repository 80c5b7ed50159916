from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from kmerch.products.models import DATE_PATTERN, TIME_PATTERN
from kmerch.schema.full_schema import Promo


class PromoCreateIn(BaseModel):
    code: str = Field(..., min_length=2, max_length=32)
    name: str = Field(..., min_length=1, max_length=128)
    discount: int = Field(..., ge=1, le=100, description="Percent off")
    max_discount: Optional[int] = Field(None, ge=0, description="Cap in centavos")
    min_order: Optional[int] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    start_date: str = Field(..., pattern=DATE_PATTERN)
    start_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    end_date: str = Field(..., pattern=DATE_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    is_active: bool = True

    model_config = {"extra": "forbid"}


class PromoUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    discount: Optional[int] = Field(None, ge=1, le=100)
    max_discount: Optional[int] = Field(None, ge=0)
    min_order: Optional[int] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    start_date: Optional[str] = Field(None, pattern=DATE_PATTERN)
    start_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    end_date: Optional[str] = Field(None, pattern=DATE_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    is_active: Optional[bool] = None

    model_config = {"extra": "forbid"}


class PromoValidateIn(BaseModel):
    code: str = Field(..., max_length=32)
    subtotal: int = Field(..., ge=0)


def serialize_promo(p: Promo) -> Dict[str, Any]:
    return {
        "code": p.code,
        "name": p.name,
        "discount": p.discount,
        "max_discount": p.max_discount,
        "min_order": p.min_order,
        "max_uses": p.max_uses,
        "used_count": p.used_count,
        "starts_at": _iso(p.starts_at),
        "ends_at": _iso(p.ends_at),
        "is_active": p.is_active,
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
