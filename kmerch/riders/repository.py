from typing import List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from kmerch.common.utils import now
from kmerch.schema.full_schema import PickupRequest, PickupStatus, RiderLocation


async def stop_tracking_for_order(session: AsyncSession, order_id: str) -> int:
    stmt = (update(RiderLocation)
            .where(RiderLocation.order_id == order_id, RiderLocation.is_tracking.is_(True))
            .values(is_tracking=False, updated_at=now()))
    res = await session.execute(stmt)
    return res.rowcount or 0


async def get_location(session: AsyncSession, order_id: str) -> Optional[RiderLocation]:
    stmt = select(RiderLocation).where(RiderLocation.order_id == order_id)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_open_pickup_for_order(session: AsyncSession, order_id: str) -> Optional[PickupRequest]:
    stmt = (select(PickupRequest)
            .where(PickupRequest.order_id == order_id,
                   PickupRequest.status.in_([PickupStatus.PENDING.value, PickupStatus.APPROVED.value]))
            .with_for_update())
    res = await session.execute(stmt)
    return res.scalars().first()


async def get_pickup_for_update(session: AsyncSession, pickup_id: int) -> Optional[PickupRequest]:
    stmt = select(PickupRequest).where(PickupRequest.id == pickup_id).with_for_update()
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def list_pickups(session: AsyncSession, rider_id: Optional[str] = None,
                       status: Optional[str] = None) -> List[PickupRequest]:
    stmt = select(PickupRequest)
    if rider_id:
        stmt = stmt.where(PickupRequest.rider_id == rider_id)
    if status:
        stmt = stmt.where(PickupRequest.status == status)
    stmt = stmt.order_by(PickupRequest.requested_at.desc(), PickupRequest.id.desc())
    res = await session.execute(stmt)
    return list(res.scalars().all())
