from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import now, success_response
from kmerch.db.dependencies import get_session
from kmerch.preorders.models import PreOrderIn, serialize_pre_order
from kmerch.preorders.services import (cancel_pre_order, get_my_pre_orders, has_available_pre_order,
                                       is_product_pre_ordered, mark_added_to_cart, place_pre_order)

preorders_router=APIRouter()


@preorders_router.post("")
async def post_pre_order(payload: PreOrderIn, session: AsyncSession = Depends(get_session)):
    req = await place_pre_order(session, payload)
    await session.commit()
    return success_response({"pre_order": serialize_pre_order(req, now())}, status_code=status.HTTP_201_CREATED)


@preorders_router.get("/users/{user_id}")
async def get_user_pre_orders(user_id: str, session: AsyncSession = Depends(get_session)):
    at = now()
    rows = await get_my_pre_orders(session, user_id, at)
    return success_response({"items": [serialize_pre_order(req, at, product) for req, product in rows]})


@preorders_router.get("/users/{user_id}/has-available")
async def get_has_available(user_id: str, session: AsyncSession = Depends(get_session)):
    available = await has_available_pre_order(session, user_id)
    return success_response({"has_available": available})


@preorders_router.get("/users/{user_id}/products/{product_id}")
async def get_is_pre_ordered(user_id: str, product_id: int, release_at: Optional[datetime] = Query(None),
                             session: AsyncSession = Depends(get_session)):
    pre_ordered = await is_product_pre_ordered(session, user_id, product_id, release_at)
    return success_response({"product_id": product_id, "pre_ordered": pre_ordered})


@preorders_router.post("/{request_id}/added-to-cart")
async def post_added_to_cart(request_id: int, session: AsyncSession = Depends(get_session)):
    req = await mark_added_to_cart(session, request_id)
    await session.commit()
    return success_response({"pre_order": serialize_pre_order(req, now())})


@preorders_router.delete("/{request_id}")
async def delete_pre_order(request_id: int, session: AsyncSession = Depends(get_session)):
    await cancel_pre_order(session, request_id)
    await session.commit()
    return success_response({"message": f"pre-order {request_id} cancelled"})
