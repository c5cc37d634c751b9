from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime
from dispatch.database import Base


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    recipient_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_role = Column(String(20), nullable=True)
    type = Column(String(50), nullable=False)  # ORDER_UPDATE, DELIVERY_UPDATE, ...
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    related_order_id = Column(String(36), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    is_read = Column(Boolean, default=False, nullable=False)
    data = Column(JSON, nullable=True)  # Extra payload: order_id, status, driver_id
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    recipient = relationship("User")
