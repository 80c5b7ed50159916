from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from kmerch.reviews.constants import MAX_RATING, MIN_RATING
from kmerch.schema.full_schema import ProductReview

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class ReviewIn(BaseModel):
    user_email: str = Field(..., pattern=EMAIL_PATTERN, max_length=320)
    user_name: str = Field(..., min_length=1, max_length=128)
    rating: int = Field(..., ge=MIN_RATING, le=MAX_RATING)
    review: str = Field(..., min_length=1, max_length=2000)

    model_config = {"extra": "forbid"}


def serialize_review(r: ProductReview) -> Dict[str, Any]:
    return {
        "id": r.id,
        "product_id": r.product_id,
        "user_email": r.user_email,
        "user_name": r.user_name,
        "rating": r.rating,
        "review": r.review,
        "created_at": _iso(r.created_at),
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
