"""
Driver Location Model
Latest known position of a driver plus the history of pings
"""
from sqlalchemy import Column, String, Boolean, DateTime, Float, ForeignKey
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from dispatch.database import Base


class DriverLocation(Base):
    """
    One row per driver, overwritten on every location ping
    """
    __tablename__ = "driver_locations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    driver_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    heading = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    accuracy = Column(Float, nullable=True)

    # Status
    is_active = Column(Boolean, default=True, nullable=False)
    status = Column(String(20), default="online", nullable=False)  # online, offline
    current_order_id = Column(String(36), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Relationships
    driver = relationship("User", back_populates="location")
    history = relationship("LocationHistory", back_populates="driver_location", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<DriverLocation {self.driver_id} ({self.latitude}, {self.longitude})>"


class LocationHistory(Base):
    __tablename__ = "location_history"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    driver_location_id = Column(String(36), ForeignKey("driver_locations.id", ondelete="CASCADE"), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    order_id = Column(String(36), nullable=True, index=True)
    recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    driver_location = relationship("DriverLocation", back_populates="history")
