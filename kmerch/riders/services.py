from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional
from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from kmerch.orders.exceptions import InvalidInput, InvalidState, StorageUnavailable
from kmerch.orders.repository import get_order, get_order_for_update
from kmerch.orders.services import OrderLifecycle
from kmerch.riders.constants import LAT_RANGE, LNG_RANGE, TRACKABLE_STATUSES, logger
from kmerch.riders.repository import (get_location, get_open_pickup_for_order, get_pickup_for_update,
                                      list_pickups, stop_tracking_for_order)
from kmerch.schema.full_schema import OrderStatus, PickupRequest, PickupStatus, RiderLocation


class RiderService:
    """Pickup requests, delivery hand-off and live location for riders.

    Every order status change goes through the lifecycle; this class only keeps the
    pickup and location rows around it.
    """

    def __init__(self, lifecycle: OrderLifecycle, session_factory: async_sessionmaker):
        self.lifecycle = lifecycle
        self._session_factory = session_factory

    @asynccontextmanager
    async def _tx(self, op: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as exc:
            logger.error("rider.storage_unavailable", extra={"op": op}, exc_info=exc)
            raise StorageUnavailable() from exc

    # ---------------------------------------------------------------- pickups

    async def request_pickup(self, order_id: str, rider_id: str, rider_name: str) -> PickupRequest:
        async with self._tx("request_pickup") as session:
            order = await get_order_for_update(session, order_id)
            if order.order_status != OrderStatus.CONFIRMED.value:
                raise InvalidState("Only confirmed orders can be picked up")
            if await get_open_pickup_for_order(session, order_id) is not None:
                raise InvalidState("This order already has a pickup request")

            pickup = PickupRequest(order_id=order_id, rider_id=rider_id, rider_name=rider_name.strip(),
                                   status=PickupStatus.PENDING.value, requested_at=self.lifecycle.clock())
            session.add(pickup)
            await session.flush()

        logger.info("pickup.requested", extra={"order_id": order_id, "rider_id": rider_id, "pickup_id": pickup.id})
        return pickup

    async def _lock_pending(self, session: AsyncSession, pickup_id: int) -> PickupRequest:
        pickup = await get_pickup_for_update(session, pickup_id)
        if pickup is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Pickup request not found")
        if pickup.status != PickupStatus.PENDING.value:
            raise InvalidState(f"Pickup request is already {pickup.status}")
        return pickup

    async def approve(self, pickup_id: int) -> PickupRequest:
        """Ship the order to the requesting rider and approve the pickup in one transaction.

        A pickup whose order is no longer confirmed is rejected instead, and InvalidState raised.
        """
        stale_status = None
        async with self._tx("approve_pickup") as session:
            pickup = await self._lock_pending(session, pickup_id)
            order = await get_order_for_update(session, pickup.order_id)
            if order.order_status == OrderStatus.CONFIRMED.value:
                self.lifecycle.ship_with_rider(order, pickup.rider_id, pickup.rider_name)
                pickup.status = PickupStatus.APPROVED.value
            else:
                stale_status = order.order_status
                pickup.status = PickupStatus.REJECTED.value
            pickup.decided_at = self.lifecycle.clock()

        if stale_status is not None:
            logger.warning("pickup.auto_rejected", extra={"pickup_id": pickup_id, "order_id": pickup.order_id,
                                                          "order_status": stale_status})
            raise InvalidState(f"Order is {stale_status}, the pickup request was rejected")

        self.lifecycle.rider_assigned(order)
        logger.info("pickup.decided", extra={"pickup_id": pickup_id, "decision": pickup.status})
        return pickup

    async def reject(self, pickup_id: int) -> PickupRequest:
        async with self._tx("reject_pickup") as session:
            pickup = await self._lock_pending(session, pickup_id)
            pickup.status = PickupStatus.REJECTED.value
            pickup.decided_at = self.lifecycle.clock()
        logger.info("pickup.decided", extra={"pickup_id": pickup_id, "decision": pickup.status})
        return pickup

    async def list_for_rider(self, rider_id: str) -> List[PickupRequest]:
        async with self._tx("list_for_rider") as session:
            return await list_pickups(session, rider_id=rider_id)

    async def list_pending(self) -> List[PickupRequest]:
        async with self._tx("list_pending") as session:
            return await list_pickups(session, status=PickupStatus.PENDING.value)

    # ---------------------------------------------------------------- delivery

    async def start_delivery(self, order_id: str, rider_id: str):
        return await self.lifecycle.start_delivery(order_id, rider_id)

    # ---------------------------------------------------------------- location

    async def update_location(self, order_id: str, rider_id: str, lat: float, lng: float,
                              accuracy: Optional[float] = None, heading: Optional[float] = None,
                              speed: Optional[float] = None) -> RiderLocation:
        if not LAT_RANGE[0] <= lat <= LAT_RANGE[1] or not LNG_RANGE[0] <= lng <= LNG_RANGE[1]:
            raise InvalidInput("Coordinates out of range")

        async with self._tx("update_location") as session:
            order = await get_order(session, order_id)
            if order.rider_id != rider_id:
                raise InvalidState("This order is not assigned to you")
            if order.order_status not in TRACKABLE_STATUSES:
                raise InvalidState("Location is only tracked while the order is on its way")

            loc = await get_location(session, order_id)
            if loc is None:
                loc = RiderLocation(order_id=order_id, rider_id=rider_id, lat=lat, lng=lng)
                session.add(loc)
            loc.rider_id = rider_id
            loc.lat = lat
            loc.lng = lng
            loc.accuracy = accuracy
            loc.heading = heading
            loc.speed = speed
            loc.is_tracking = True
            loc.updated_at = self.lifecycle.clock()
            await session.flush()

        logger.debug("rider.location_updated", extra={"order_id": order_id, "rider_id": rider_id})
        return loc

    async def get_location(self, order_id: str) -> Optional[RiderLocation]:
        async with self._tx("get_location") as session:
            await get_order(session, order_id)
            return await get_location(session, order_id)

    async def stop_tracking(self, order_id: str) -> int:
        async with self._tx("stop_tracking") as session:
            await get_order(session, order_id)
            stopped = await stop_tracking_for_order(session, order_id)
        logger.info("rider.tracking_stopped", extra={"order_id": order_id})
        return stopped
