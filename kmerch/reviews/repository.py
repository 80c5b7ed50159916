from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.schema.full_schema import ProductReview


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


async def list_product_reviews(session: AsyncSession, product_id: int) -> List[ProductReview]:
    stmt = (select(ProductReview)
            .where(ProductReview.product_id == product_id)
            .order_by(ProductReview.created_at.desc(), ProductReview.id.desc()))
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def get_review_by_reviewer(session: AsyncSession, product_id: int, user_email: str) -> Optional[ProductReview]:
    stmt = select(ProductReview).where(ProductReview.product_id == product_id,
                                       ProductReview.user_email == normalize_email(user_email))
    res = await session.execute(stmt)
    return res.scalar_one_or_none()
