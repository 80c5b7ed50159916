from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.cart.models import CartItemInput, CartQtyInput, serialize_cart_item
from kmerch.cart.repository import add_item_to_cart, get_cart_items, remove_cart_items, set_item_quantity
from kmerch.common.utils import success_response
from kmerch.db.dependencies import get_session
from kmerch.products.repository import get_product_or_404

carts_router=APIRouter()


@carts_router.get("/{user_id}")
async def get_cart(user_id: str, session: AsyncSession = Depends(get_session)):
    items = await get_cart_items(session, user_id)
    out = [serialize_cart_item(i) for i in items]
    return success_response({
        "items": out,
        "item_count": sum(i["quantity"] for i in out),
        "subtotal": sum(i["line_total"] for i in out),
    })


@carts_router.post("/{user_id}/items")
async def add_to_cart(user_id: str, payload: CartItemInput, session: AsyncSession = Depends(get_session)):
    product = await get_product_or_404(session, payload.product_id)
    if product.stock <= 0:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"{product.name} is out of stock")

    item, created = await add_item_to_cart(session, user_id, product, payload.quantity)
    await session.commit()

    resp = {"item": serialize_cart_item(item), "created": created}
    return success_response(resp, status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK)


@carts_router.patch("/{user_id}/items/{product_id}")
async def update_cart_item(user_id: str, product_id: int, payload: CartQtyInput,
                           session: AsyncSession = Depends(get_session)):
    item = await set_item_quantity(session, user_id, product_id, payload.quantity)
    await session.commit()
    if item is None:
        return success_response({"item": None, "removed": True})
    return success_response({"item": serialize_cart_item(item), "removed": False})


@carts_router.delete("/{user_id}/items/{product_id}")
async def remove_cart_item(user_id: str, product_id: int, session: AsyncSession = Depends(get_session)):
    removed = await remove_cart_items(session, user_id, [product_id])
    await session.commit()
    return success_response({"removed": removed})


@carts_router.delete("/{user_id}")
async def clear_cart(user_id: str, session: AsyncSession = Depends(get_session)):
    removed = await remove_cart_items(session, user_id)
    await session.commit()
    return success_response({"removed": removed})
