from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import success_response
from kmerch.db.dependencies import get_session
from kmerch.reviews.models import ReviewIn, serialize_review
from kmerch.reviews.repository import list_product_reviews
from kmerch.reviews.services import delete_review, submit_review

reviews_router=APIRouter()


@reviews_router.get("/{product_id}/reviews")
async def get_product_reviews(product_id: int, session: AsyncSession = Depends(get_session)):
    reviews = await list_product_reviews(session, product_id)
    return success_response({"items": [serialize_review(r) for r in reviews]})


@reviews_router.post("/{product_id}/reviews")
async def post_review(product_id: int, payload: ReviewIn, session: AsyncSession = Depends(get_session)):
    review, updated = await submit_review(session, product_id, payload)
    await session.commit()
    code = status.HTTP_200_OK if updated else status.HTTP_201_CREATED
    return success_response({"review": serialize_review(review), "updated": updated}, status_code=code)


@reviews_router.delete("/{product_id}/reviews/{review_id}")
async def remove_review(product_id: int, review_id: int, user_email: str = Query(..., max_length=320),
                        session: AsyncSession = Depends(get_session)):
    await delete_review(session, product_id, review_id, user_email)
    await session.commit()
    return success_response({"message": f"review {review_id} deleted"})
