from dispatch.models.user import User, UserRole
from dispatch.models.store import Store
from dispatch.models.order import Order, OrderStatus
from dispatch.models.driver_location import DriverLocation, LocationHistory
from dispatch.models.notification import Notification

__all__ = [
    "User",
    "UserRole",
    "Store",
    "Order",
    "OrderStatus",
    "DriverLocation",
    "LocationHistory",
    "Notification",
]
