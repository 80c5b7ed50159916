from datetime import datetime
from typing import Dict, Iterable, List, Optional
from fastapi import HTTPException, status
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import now
from kmerch.schema.full_schema import Product, ProductStatus


async def get_product_or_404(session: AsyncSession, product_id: int) -> Product:
    product = await session.get(Product, product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Product {product_id} not found")
    return product


async def fetch_products_by_ids(session: AsyncSession, product_ids: Iterable[int]) -> Dict[int, Product]:
    ids = list(set(product_ids))
    if not ids:
        return {}
    res = await session.execute(select(Product).where(Product.id.in_(ids)))
    return {p.id: p for p in res.scalars().all()}


async def fetch_collection(session: AsyncSession, at: datetime, category: Optional[str] = None,
                           kpop_group: Optional[str] = None, q: Optional[str] = None) -> List[Product]:
    """Regular products plus pre-orders whose release time has passed."""
    released = and_(Product.is_pre_order.is_(True), Product.release_at.is_not(None), Product.release_at <= at)
    stmt = select(Product).where(Product.status == ProductStatus.AVAILABLE.value,
                                 or_(Product.is_pre_order.is_(False), released))
    if category:
        stmt = stmt.where(Product.category == category)
    if kpop_group:
        stmt = stmt.where(Product.kpop_group == kpop_group)
    if q:
        stmt = stmt.where(Product.name.ilike(f"%{q}%"))
    stmt = stmt.order_by(Product.created_at.desc(), Product.id.desc())
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def fetch_pre_orders(session: AsyncSession, at: datetime) -> List[Product]:
    stmt = (select(Product)
            .where(Product.status == ProductStatus.AVAILABLE.value,
                   Product.is_pre_order.is_(True),
                   or_(Product.release_at.is_(None), Product.release_at > at))
            .order_by(Product.release_at.asc(), Product.id.asc()))
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def patch_product(session: AsyncSession, product: Product, updates: dict) -> Product:
    for field, value in updates.items():
        setattr(product, field, value)
    product.updated_at = now()
    session.add(product)
    await session.flush()
    return product


async def reserve_stock(session: AsyncSession, quantities: Dict[int, int]) -> List[int]:
    """Conditionally decrement stock for each product. Returns ids that could not be reserved.

    Caller owns the transaction and must roll back when anything is returned.
    """
    short = []
    for product_id, qty in sorted(quantities.items()):
        stmt = (update(Product)
                .where(Product.id == product_id, Product.stock >= qty)
                .values(stock=Product.stock - qty, updated_at=now()))
        res = await session.execute(stmt)
        if res.rowcount != 1:
            short.append(product_id)
    return short


async def restore_stock(session: AsyncSession, quantities: Dict[int, int]) -> None:
    for product_id, qty in sorted(quantities.items()):
        stmt = (update(Product)
                .where(Product.id == product_id)
                .values(stock=Product.stock + qty, updated_at=now()))
        await session.execute(stmt)
