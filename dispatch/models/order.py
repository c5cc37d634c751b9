from sqlalchemy import Column, String, Numeric, DateTime, Float, ForeignKey, Enum as SQLEnum, Text, JSON
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
import enum
from dispatch.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    PREPARING = "PREPARING"
    READY = "READY"
    ASSIGNED = "ASSIGNED"
    IN_DELIVERY = "IN_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# Orders a driver can be (re)assigned to
ASSIGNABLE_STATUSES = (OrderStatus.READY, OrderStatus.ASSIGNED)

# Orders that count towards a driver's current workload
ACTIVE_DELIVERY_STATUSES = (OrderStatus.ASSIGNED, OrderStatus.IN_DELIVERY)

# driver_id is set exactly when the order is in one of these
DRIVER_BOUND_STATUSES = (OrderStatus.ASSIGNED, OrderStatus.IN_DELIVERY, OrderStatus.DELIVERED)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    vendor_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    store_id = Column(String(36), ForeignKey("stores.id", ondelete="SET NULL"), nullable=True, index=True)
    driver_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(SQLEnum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    delivery_address = Column(JSON, nullable=True)
    delivery_latitude = Column(Float, nullable=True)
    delivery_longitude = Column(Float, nullable=True)
    total = Column(Numeric(10, 2), default=0, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    assigned_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Relationships
    customer = relationship("User", foreign_keys=[customer_id])
    vendor = relationship("User", foreign_keys=[vendor_id])
    driver = relationship("User", foreign_keys=[driver_id])
    store = relationship("Store", back_populates="orders")

    def is_participant(self, user_id: str) -> bool:
        """Customer, vendor or driver of this order"""
        return user_id in (self.customer_id, self.vendor_id, self.driver_id)
