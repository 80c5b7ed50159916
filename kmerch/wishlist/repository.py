from typing import List, Optional
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.schema.full_schema import Product, WishlistItem


async def get_wishlist_item(session: AsyncSession, user_id: str, product_id: int) -> Optional[WishlistItem]:
    stmt = select(WishlistItem).where(WishlistItem.user_id == user_id, WishlistItem.product_id == product_id)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def toggle_wishlist_item(session: AsyncSession, user_id: str, product_id: int) -> bool:
    """Returns True when the product is wishlisted after the call."""
    item = await get_wishlist_item(session, user_id, product_id)
    if item is not None:
        await session.delete(item)
        await session.flush()
        return False
    session.add(WishlistItem(user_id=user_id, product_id=product_id))
    await session.flush()
    return True


async def remove_wishlist_item(session: AsyncSession, user_id: str, product_id: int) -> int:
    stmt = delete(WishlistItem).where(WishlistItem.user_id == user_id, WishlistItem.product_id == product_id)
    res = await session.execute(stmt)
    return res.rowcount or 0


async def list_wishlist_products(session: AsyncSession, user_id: str) -> List[Product]:
    stmt = (select(Product)
            .join(WishlistItem, WishlistItem.product_id == Product.id)
            .where(WishlistItem.user_id == user_id)
            .order_by(WishlistItem.created_at.desc(), WishlistItem.id.desc()))
    res = await session.execute(stmt)
    return list(res.scalars().all())
