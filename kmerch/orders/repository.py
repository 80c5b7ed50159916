from typing import List, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.orders.exceptions import OrderNotFound
from kmerch.schema.full_schema import Orders


async def get_order_for_update(session: AsyncSession, order_id: str) -> Orders:
    """Row-locked read, must run inside the transaction that writes the order."""
    stmt = select(Orders).where(Orders.order_id == order_id).with_for_update()
    res = await session.execute(stmt)
    order = res.scalar_one_or_none()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


async def get_order(session: AsyncSession, order_id: str) -> Orders:
    stmt = select(Orders).where(Orders.order_id == order_id)
    res = await session.execute(stmt)
    order = res.scalar_one_or_none()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


async def get_order_by_payment_link(session: AsyncSession, payment_link_id: str) -> Optional[Orders]:
    stmt = select(Orders).where(Orders.payment_link_id == payment_link_id)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def list_orders_by_email(session: AsyncSession, email: str) -> List[Orders]:
    stmt = (select(Orders)
            .where(Orders.email == email.strip().lower())
            .order_by(Orders.created_at.desc(), Orders.id.desc()))
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def list_orders(session: AsyncSession, order_status: Optional[str] = None,
                      limit: int = 100, offset: int = 0) -> List[Orders]:
    stmt = select(Orders)
    if order_status:
        stmt = stmt.where(Orders.order_status == order_status)
    stmt = stmt.order_by(Orders.created_at.desc(), Orders.id.desc()).limit(limit).offset(offset)
    res = await session.execute(stmt)
    return list(res.scalars().all())
