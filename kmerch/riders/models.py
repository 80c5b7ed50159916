from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from kmerch.schema.full_schema import PickupRequest, RiderLocation


class PickupRequestIn(BaseModel):
    order_id: str = Field(..., min_length=1, max_length=40)
    rider_id: str = Field(..., min_length=1, max_length=128)
    rider_name: str = Field(..., min_length=1, max_length=128)


class RiderIn(BaseModel):
    rider_id: str = Field(..., min_length=1, max_length=128)


class LocationIn(BaseModel):
    rider_id: str = Field(..., min_length=1, max_length=128)
    lat: float
    lng: float
    accuracy: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None


def serialize_pickup(p: PickupRequest) -> Dict[str, Any]:
    return {
        "id": p.id,
        "order_id": p.order_id,
        "rider_id": p.rider_id,
        "rider_name": p.rider_name,
        "status": p.status,
        "requested_at": p.requested_at.isoformat() if p.requested_at else None,
        "decided_at": p.decided_at.isoformat() if p.decided_at else None,
    }


def serialize_location(loc: RiderLocation) -> Dict[str, Any]:
    return {
        "order_id": loc.order_id,
        "rider_id": loc.rider_id,
        "lat": loc.lat,
        "lng": loc.lng,
        "accuracy": loc.accuracy,
        "heading": loc.heading,
        "speed": loc.speed,
        "is_tracking": loc.is_tracking,
        "updated_at": loc.updated_at.isoformat() if loc.updated_at else None,
    }
