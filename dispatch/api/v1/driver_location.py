"""
Driver location endpoints
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from dispatch.database import get_db
from dispatch.api.deps import get_current_user, require_roles, get_event_bus
from dispatch.events import EventBus, emit_driver_location_updated
from dispatch.exceptions import NotFoundError, ValidationError
from dispatch.models.user import User, UserRole
from dispatch.schemas.common import ResponseModel
from dispatch.schemas.delivery import LocationUpdate
from dispatch.services import location_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/location", response_model=ResponseModel)
async def update_location(
    payload: LocationUpdate,
    current_user: User = Depends(require_roles(UserRole.DRIVER)),
    bus: EventBus = Depends(get_event_bus),
    db: Session = Depends(get_db)
):
    """Record the driver's current position and broadcast it to trackers"""
    location = location_service.upsert_driver_location(db, current_user.id, payload)
    serialized = location_service.serialize_location(location)
    emit_driver_location_updated(bus, current_user.id, serialized)
    logger.debug("Location update from driver %s", current_user.id)
    return ResponseModel(success=True, data={"location": serialized}, message="Location updated")


@router.get("/location", response_model=ResponseModel)
def get_location(
    driverId: Optional[str] = None,
    orderId: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    if not driverId and not orderId:
        raise ValidationError("driverId or orderId is required")

    if driverId:
        location = location_service.get_location_for_driver(db, driverId)
    else:
        location = location_service.get_location_for_order(db, orderId)

    if location is None:
        raise NotFoundError("Driver location")
    return ResponseModel(success=True, data={"location": location_service.serialize_location(location)})


@router.get("/nearby", response_model=ResponseModel)
def get_nearby_drivers(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius: float = Query(5, gt=0),
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.VENDOR)),
    db: Session = Depends(get_db)
):
    """Active drivers seen recently within radius km, nearest first"""
    nearby = location_service.find_nearby_drivers(db, lat, lng, radius)
    drivers = []
    for location, distance in nearby:
        item = location_service.serialize_location(location)
        item["distanceKm"] = round(distance, 3)
        drivers.append(item)
    return ResponseModel(success=True, data={"drivers": drivers, "total": len(drivers)})
