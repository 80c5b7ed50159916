from datetime import datetime
from typing import List, Optional, Tuple
from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import as_utc, now
from kmerch.preorders.constants import MSG_DUPLICATE, MSG_NO_SCHEDULE, MSG_NOT_FOUND, MSG_PRODUCT_NOT_FOUND, logger
from kmerch.preorders.models import PreOrderIn, is_available
from kmerch.preorders.repository import (first_available_pre_order, list_user_pre_orders,
                                         list_user_product_pre_orders)
from kmerch.schema.full_schema import PreOrderRequest, Product


async def place_pre_order(session: AsyncSession, payload: PreOrderIn, at: datetime = None) -> PreOrderRequest:
    """Record interest in a product's upcoming release, once per user, product and release slot."""
    product = await session.get(Product, payload.product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=MSG_PRODUCT_NOT_FOUND)
    if product.release_at is None:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=MSG_NO_SCHEDULE)

    release_at = as_utc(product.release_at)
    if await is_product_pre_ordered(session, payload.user_id, product.id, release_at):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=MSG_DUPLICATE)

    req = PreOrderRequest(
        user_id=payload.user_id,
        product_id=product.id,
        user_email=payload.user_email.strip().lower(),
        user_name=payload.user_name.strip(),
        product_name=product.name,
        product_image=product.image,
        product_price=product.price,
        release_at=release_at,
        added_to_cart=False,
        pre_ordered_at=at or now(),
    )
    session.add(req)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=MSG_DUPLICATE)
    logger.info("preorder.placed", extra={"request_id": req.id, "user_id": req.user_id, "product_id": product.id})
    return req


async def get_my_pre_orders(session: AsyncSession, user_id: str,
                            at: datetime = None) -> List[Tuple[PreOrderRequest, Optional[Product]]]:
    """Available requests first, then newest first."""
    at = at or now()
    rows = await list_user_pre_orders(session, user_id)
    # rows come newest first, the stable sort keeps that within each group
    return sorted(rows, key=lambda row: not is_available(row[0], at))


async def has_available_pre_order(session: AsyncSession, user_id: str, at: datetime = None) -> bool:
    return await first_available_pre_order(session, user_id, at or now()) is not None


async def is_product_pre_ordered(session: AsyncSession, user_id: str, product_id: int,
                                 release_at: Optional[datetime] = None) -> bool:
    requests = await list_user_product_pre_orders(session, user_id, product_id)
    if release_at is None:
        return bool(requests)
    slot = as_utc(release_at)
    return any(as_utc(r.release_at) == slot for r in requests)


async def get_pre_order_or_404(session: AsyncSession, request_id: int) -> PreOrderRequest:
    req = await session.get(PreOrderRequest, request_id)
    if req is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=MSG_NOT_FOUND)
    return req


async def mark_added_to_cart(session: AsyncSession, request_id: int) -> PreOrderRequest:
    req = await get_pre_order_or_404(session, request_id)
    req.added_to_cart = True
    session.add(req)
    await session.flush()
    logger.info("preorder.added_to_cart", extra={"request_id": request_id})
    return req


async def cancel_pre_order(session: AsyncSession, request_id: int) -> None:
    """Cancelling and removing both delete the request."""
    req = await get_pre_order_or_404(session, request_id)
    await session.delete(req)
    await session.flush()
    logger.info("preorder.cancelled", extra={"request_id": request_id, "product_id": req.product_id})


remove_pre_order = cancel_pre_order
