from datetime import datetime
from typing import Tuple
from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import now
from kmerch.products.repository import get_product_or_404
from kmerch.reviews.constants import MSG_NOT_AUTHORIZED, MSG_NOT_FOUND, logger
from kmerch.reviews.models import ReviewIn
from kmerch.reviews.repository import get_review_by_reviewer, normalize_email
from kmerch.schema.full_schema import ProductReview


async def submit_review(session: AsyncSession, product_id: int, payload: ReviewIn,
                        at: datetime = None) -> Tuple[ProductReview, bool]:
    """Insert the reviewer's review, or overwrite their earlier one. Returns (review, updated)."""
    await get_product_or_404(session, product_id)
    at = at or now()
    email = normalize_email(payload.user_email)

    review = await get_review_by_reviewer(session, product_id, email)
    updated = review is not None
    if review is None:
        review = ProductReview(product_id=product_id, user_email=email, user_name=payload.user_name.strip())
    review.rating = payload.rating
    review.review = payload.review.strip()
    # a resubmitted review moves back to the top
    review.created_at = at
    session.add(review)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                            detail="A review from this email was just submitted, try again")

    logger.info("review.submitted", extra={"product_id": product_id, "review_id": review.id, "updated": updated})
    return review, updated


async def delete_review(session: AsyncSession, product_id: int, review_id: int, user_email: str) -> None:
    """Only the reviewer, matched by email, may delete a review."""
    review = await session.get(ProductReview, review_id)
    if review is None or review.product_id != product_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=MSG_NOT_FOUND)
    if review.user_email != normalize_email(user_email):
        logger.warning("review.delete_denied", extra={"review_id": review_id})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=MSG_NOT_AUTHORIZED)
    await session.delete(review)
    await session.flush()
    logger.info("review.deleted", extra={"review_id": review_id, "product_id": review.product_id})
