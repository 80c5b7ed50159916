from fastapi import APIRouter, Depends, status
from kmerch.common.utils import success_response
from kmerch.riders.dependencies import get_rider_service
from kmerch.riders.models import LocationIn, PickupRequestIn, RiderIn, serialize_location, serialize_pickup
from kmerch.riders.services import RiderService

riders_router = APIRouter()
pickups_admin_router = APIRouter()


@riders_router.post("/pickup-requests")
async def request_pickup(payload: PickupRequestIn, riders: RiderService = Depends(get_rider_service)):
    pickup = await riders.request_pickup(payload.order_id, payload.rider_id, payload.rider_name)
    return success_response({"pickup_request": serialize_pickup(pickup)}, status_code=status.HTTP_201_CREATED)


@riders_router.get("/{rider_id}/pickup-requests")
async def rider_pickup_requests(rider_id: str, riders: RiderService = Depends(get_rider_service)):
    rows = await riders.list_for_rider(rider_id)
    return success_response({"items": [serialize_pickup(p) for p in rows]})


@riders_router.post("/deliveries/{order_id}/start")
async def start_delivery(order_id: str, payload: RiderIn, riders: RiderService = Depends(get_rider_service)):
    order = await riders.start_delivery(order_id, payload.rider_id)
    return success_response({"order": riders.lifecycle.serialize(order)})


@riders_router.put("/locations/{order_id}")
async def update_location(order_id: str, payload: LocationIn, riders: RiderService = Depends(get_rider_service)):
    loc = await riders.update_location(order_id, payload.rider_id, payload.lat, payload.lng,
                                       accuracy=payload.accuracy, heading=payload.heading, speed=payload.speed)
    return success_response({"location": serialize_location(loc)})


@riders_router.post("/locations/{order_id}/stop")
async def stop_tracking(order_id: str, riders: RiderService = Depends(get_rider_service)):
    stopped = await riders.stop_tracking(order_id)
    return success_response({"stopped": stopped > 0})


@pickups_admin_router.get("")
async def pending_pickup_requests(riders: RiderService = Depends(get_rider_service)):
    rows = await riders.list_pending()
    return success_response({"items": [serialize_pickup(p) for p in rows]})


@pickups_admin_router.post("/{pickup_id}/approve")
async def approve_pickup(pickup_id: int, riders: RiderService = Depends(get_rider_service)):
    pickup = await riders.approve(pickup_id)
    return success_response({"pickup_request": serialize_pickup(pickup)})


@pickups_admin_router.post("/{pickup_id}/reject")
async def reject_pickup(pickup_id: int, riders: RiderService = Depends(get_rider_service)):
    pickup = await riders.reject(pickup_id)
    return success_response({"pickup_request": serialize_pickup(pickup)})
