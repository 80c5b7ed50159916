from datetime import datetime
from typing import List, Optional
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import now
from kmerch.schema.full_schema import Promo


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


async def get_promo_by_code(session: AsyncSession, code: str) -> Optional[Promo]:
    stmt = select(Promo).where(Promo.code == normalize_code(code))
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def list_promos(session: AsyncSession) -> List[Promo]:
    res = await session.execute(select(Promo).order_by(Promo.created_at.desc(), Promo.id.desc()))
    return list(res.scalars().all())


async def list_active_promos(session: AsyncSession, at: datetime) -> List[Promo]:
    stmt = (select(Promo)
            .where(Promo.is_active.is_(True), Promo.starts_at <= at, Promo.ends_at >= at,
                   or_(Promo.max_uses.is_(None), Promo.used_count < Promo.max_uses))
            .order_by(Promo.ends_at.asc()))
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def increment_usage(session: AsyncSession, code: str) -> bool:
    """Atomic +1 that never goes past max_uses. False when the promo is used up or missing."""
    stmt = (update(Promo)
            .where(Promo.code == normalize_code(code),
                   or_(Promo.max_uses.is_(None), Promo.used_count < Promo.max_uses))
            .values(used_count=Promo.used_count + 1, updated_at=now()))
    res = await session.execute(stmt)
    return res.rowcount == 1
