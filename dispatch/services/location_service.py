"""
Driver location pings and lookups
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.orm import Session
from dispatch.config import settings
from dispatch.models.driver_location import DriverLocation, LocationHistory
from dispatch.models.order import Order
from dispatch.schemas.delivery import LocationUpdate
from dispatch.utils.geo import haversine_km


def freshness_cutoff(now: Optional[datetime] = None) -> datetime:
    """Oldest location update still considered live"""
    now = now or datetime.utcnow()
    return now - timedelta(minutes=settings.DRIVER_FRESHNESS_MINUTES)


def serialize_location(location: DriverLocation) -> Dict[str, Any]:
    return {
        "driverId": location.driver_id,
        "lat": location.latitude,
        "lng": location.longitude,
        "heading": location.heading,
        "speed": location.speed,
        "accuracy": location.accuracy,
        "isActive": location.is_active,
        "status": location.status,
        "orderId": location.current_order_id,
        "updatedAt": location.updated_at.isoformat() if location.updated_at else None,
    }


def upsert_driver_location(
    db: Session,
    driver_id: str,
    update: LocationUpdate,
    now: Optional[datetime] = None,
) -> DriverLocation:
    """Overwrite the driver's current location and append it to the history"""
    now = now or datetime.utcnow()
    location = db.query(DriverLocation).filter(DriverLocation.driver_id == driver_id).first()
    if location is None:
        location = DriverLocation(driver_id=driver_id, created_at=now)
        db.add(location)

    location.latitude = update.latitude
    location.longitude = update.longitude
    location.accuracy = update.accuracy
    location.heading = update.heading
    location.speed = update.speed
    location.is_active = update.isActive if update.isActive is not None else True
    location.status = update.status or "online"
    location.current_order_id = update.currentOrderId
    location.updated_at = now
    db.flush()

    db.add(LocationHistory(
        driver_location_id=location.id,
        latitude=update.latitude,
        longitude=update.longitude,
        order_id=update.currentOrderId,
        recorded_at=now,
    ))
    db.commit()
    db.refresh(location)
    return location


def get_location_for_driver(db: Session, driver_id: str) -> Optional[DriverLocation]:
    return db.query(DriverLocation).filter(DriverLocation.driver_id == driver_id).first()


def get_location_for_order(db: Session, order_id: str) -> Optional[DriverLocation]:
    """Location of the driver delivering the order, falling back to the driver's reported current order"""
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is not None and order.driver_id:
        location = get_location_for_driver(db, order.driver_id)
        if location is not None:
            return location
    return db.query(DriverLocation).filter(DriverLocation.current_order_id == order_id).first()


def find_nearby_drivers(
    db: Session,
    latitude: float,
    longitude: float,
    radius_km: float,
    now: Optional[datetime] = None,
) -> List[Tuple[DriverLocation, float]]:
    """Fresh, active driver locations within radius_km, nearest first"""
    locations = db.query(DriverLocation).filter(
        DriverLocation.is_active.is_(True),
        DriverLocation.updated_at >= freshness_cutoff(now),
    ).all()

    nearby = []
    for location in locations:
        distance = haversine_km(latitude, longitude, location.latitude, location.longitude)
        if distance <= radius_km:
            nearby.append((location, distance))
    nearby.sort(key=lambda pair: pair[1])
    return nearby
