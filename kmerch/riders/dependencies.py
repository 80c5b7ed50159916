from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker
from kmerch.db.dependencies import get_session_factory
from kmerch.orders.dependencies import get_order_lifecycle
from kmerch.orders.services import OrderLifecycle
from kmerch.riders.services import RiderService


def get_rider_service(lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
                      session_factory: async_sessionmaker = Depends(get_session_factory)) -> RiderService:
    return RiderService(lifecycle, session_factory)
