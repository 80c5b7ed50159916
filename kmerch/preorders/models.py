from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from kmerch.common.utils import as_utc
from kmerch.products.models import serialize_product
from kmerch.reviews.models import EMAIL_PATTERN
from kmerch.schema.full_schema import PreOrderRequest, Product


class PreOrderIn(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=128)
    product_id: int
    user_email: str = Field(..., pattern=EMAIL_PATTERN, max_length=320)
    user_name: str = Field(..., min_length=1, max_length=128)

    model_config = {"extra": "forbid"}


def is_available(req: PreOrderRequest, at: datetime) -> bool:
    """A request becomes available once its release slot has passed."""
    return as_utc(req.release_at) <= at


def serialize_pre_order(req: PreOrderRequest, at: datetime, product: Optional[Product] = None) -> Dict[str, Any]:
    return {
        "id": req.id,
        "user_id": req.user_id,
        "product_id": req.product_id,
        "user_email": req.user_email,
        "user_name": req.user_name,
        "product_name": req.product_name,
        "product_image": req.product_image,
        "product_price": req.product_price,
        "release_at": req.release_at.isoformat(),
        "pre_ordered_at": req.pre_ordered_at.isoformat(),
        "is_available": is_available(req, at),
        "added_to_cart": req.added_to_cart,
        "product": serialize_product(product) if product is not None else None,
    }
