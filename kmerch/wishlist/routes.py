from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import success_response
from kmerch.db.dependencies import get_session
from kmerch.products.models import serialize_product
from kmerch.products.repository import get_product_or_404
from kmerch.wishlist.repository import (get_wishlist_item, list_wishlist_products, remove_wishlist_item,
                                        toggle_wishlist_item)

wishlist_router=APIRouter()


class WishlistToggleIn(BaseModel):
    product_id: int


@wishlist_router.get("/{user_id}")
async def get_wishlist(user_id: str, session: AsyncSession = Depends(get_session)):
    products = await list_wishlist_products(session, user_id)
    return success_response({"items": [serialize_product(p) for p in products]})


@wishlist_router.post("/{user_id}/toggle")
async def toggle_wishlist(user_id: str, payload: WishlistToggleIn, session: AsyncSession = Depends(get_session)):
    await get_product_or_404(session, payload.product_id)
    wishlisted = await toggle_wishlist_item(session, user_id, payload.product_id)
    await session.commit()
    return success_response({"product_id": payload.product_id, "wishlisted": wishlisted})


@wishlist_router.get("/{user_id}/items/{product_id}")
async def is_wishlisted(user_id: str, product_id: int, session: AsyncSession = Depends(get_session)):
    item = await get_wishlist_item(session, user_id, product_id)
    return success_response({"product_id": product_id, "wishlisted": item is not None})


@wishlist_router.delete("/{user_id}/items/{product_id}")
async def remove_from_wishlist(user_id: str, product_id: int, session: AsyncSession = Depends(get_session)):
    removed = await remove_wishlist_item(session, user_id, product_id)
    await session.commit()
    return success_response({"removed": removed})
