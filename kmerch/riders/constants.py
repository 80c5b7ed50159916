from kmerch.common.logging_setup import get_logger
from kmerch.schema.full_schema import OrderStatus

logger = get_logger("kmerch.riders")

LAT_RANGE = (-90.0, 90.0)
LNG_RANGE = (-180.0, 180.0)

# a rider only reports a position while the parcel is with them
TRACKABLE_STATUSES = frozenset({OrderStatus.SHIPPED.value, OrderStatus.OUT_FOR_DELIVERY.value})
