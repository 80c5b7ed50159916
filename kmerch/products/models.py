from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from kmerch.products.constants import DEFAULT_CATEGORY
from kmerch.schema.full_schema import Product

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class ProductCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    price: int = Field(..., ge=0, description="Price in centavos")
    original_price: Optional[int] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    image: Optional[str] = Field(None, max_length=1024)
    category: str = Field(DEFAULT_CATEGORY, max_length=64)
    kpop_group: Optional[str] = Field(None, max_length=128)
    description: Optional[str] = None
    is_sale: bool = False
    is_pre_order: bool = False
    # release schedule is entered in Philippine time
    release_date: Optional[str] = Field(None, pattern=DATE_PATTERN)
    release_time: Optional[str] = Field(None, pattern=TIME_PATTERN)

    model_config = {"extra": "forbid"}


class ProductUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    price: Optional[int] = Field(None, ge=0)
    original_price: Optional[int] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    image: Optional[str] = Field(None, max_length=1024)
    category: Optional[str] = Field(None, max_length=64)
    kpop_group: Optional[str] = Field(None, max_length=128)
    description: Optional[str] = None
    status: Optional[str] = Field(None, pattern=r"^(available|hidden)$")
    is_sale: Optional[bool] = None
    is_pre_order: Optional[bool] = None
    release_date: Optional[str] = Field(None, pattern=DATE_PATTERN)
    release_time: Optional[str] = Field(None, pattern=TIME_PATTERN)

    model_config = {"extra": "forbid"}


def serialize_product(p: Product) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "price": p.price,
        "original_price": p.original_price,
        "stock": p.stock,
        "image": p.image,
        "category": p.category,
        "kpop_group": p.kpop_group,
        "description": p.description,
        "status": p.status,
        "is_sale": p.is_sale,
        "is_pre_order": p.is_pre_order,
        "release_at": _iso(p.release_at),
        "updated_at": _iso(p.updated_at),
        "version": int(p.updated_at.timestamp() * 1000) if p.updated_at else 0,
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
