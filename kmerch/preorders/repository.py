from datetime import datetime
from typing import List, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.schema.full_schema import PreOrderRequest, Product


async def list_user_pre_orders(session: AsyncSession,
                               user_id: str) -> List[Tuple[PreOrderRequest, Optional[Product]]]:
    stmt = (select(PreOrderRequest, Product)
            .outerjoin(Product, Product.id == PreOrderRequest.product_id)
            .where(PreOrderRequest.user_id == user_id)
            .order_by(PreOrderRequest.pre_ordered_at.desc(), PreOrderRequest.id.desc()))
    res = await session.execute(stmt)
    return [(req, product) for req, product in res.all()]


async def list_user_product_pre_orders(session: AsyncSession, user_id: str,
                                       product_id: int) -> List[PreOrderRequest]:
    stmt = select(PreOrderRequest).where(PreOrderRequest.user_id == user_id,
                                         PreOrderRequest.product_id == product_id)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def first_available_pre_order(session: AsyncSession, user_id: str, at: datetime) -> Optional[PreOrderRequest]:
    stmt = (select(PreOrderRequest)
            .where(PreOrderRequest.user_id == user_id,
                   PreOrderRequest.added_to_cart.is_(False),
                   PreOrderRequest.release_at <= at)
            .limit(1))
    res = await session.execute(stmt)
    return res.scalar_one_or_none()
