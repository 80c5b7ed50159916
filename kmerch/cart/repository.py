from typing import Iterable, List, Optional, Tuple
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import now
from kmerch.schema.full_schema import CartItem, Product


async def get_cart_items(session: AsyncSession, user_id: str) -> List[CartItem]:
    stmt = select(CartItem).where(CartItem.user_id == user_id).order_by(CartItem.created_at.asc(), CartItem.id.asc())
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def get_cart_item(session: AsyncSession, user_id: str, product_id: int) -> Optional[CartItem]:
    stmt = select(CartItem).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def add_item_to_cart(session: AsyncSession, user_id: str, product: Product, quantity: int) -> Tuple[CartItem, bool]:
    """Insert a snapshot of the product or bump the quantity of the existing line."""
    item = await get_cart_item(session, user_id, product.id)
    created = item is None
    if created:
        item = CartItem(user_id=user_id, product_id=product.id, name=product.name,
                        price=product.price, image=product.image, quantity=quantity)
    else:
        item.quantity += quantity
        item.updated_at = now()
    session.add(item)
    await session.flush()
    return item, created


async def set_item_quantity(session: AsyncSession, user_id: str, product_id: int, quantity: int) -> Optional[CartItem]:
    item = await get_cart_item(session, user_id, product_id)
    if item is None:
        return None
    if quantity <= 0:
        await session.delete(item)
        await session.flush()
        return None
    item.quantity = quantity
    item.updated_at = now()
    session.add(item)
    await session.flush()
    return item


async def remove_cart_items(session: AsyncSession, user_id: str, product_ids: Optional[Iterable[int]] = None) -> int:
    stmt = delete(CartItem).where(CartItem.user_id == user_id)
    if product_ids is not None:
        stmt = stmt.where(CartItem.product_id.in_(list(product_ids)))
    res = await session.execute(stmt)
    return res.rowcount or 0
