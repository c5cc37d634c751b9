from sqlalchemy import Column, String, Boolean, DateTime, Enum as SQLEnum
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
import enum
from dispatch.database import Base


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    VENDOR = "VENDOR"
    DRIVER = "DRIVER"
    CUSTOMER = "CUSTOMER"


class User(Base):
    """
    Account mirrored from the external auth provider.
    Drivers are users with the DRIVER role plus a DriverLocation row.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=True, index=True)
    phone = Column(String(20), nullable=True)
    role = Column(SQLEnum(UserRole), default=UserRole.CUSTOMER, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    stores = relationship("Store", back_populates="vendor")
    location = relationship("DriverLocation", back_populates="driver", uselist=False)

    def __repr__(self):
        return f"<User {self.name} ({self.role.value if self.role else None})>"
