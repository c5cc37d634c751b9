from pydantic import BaseModel, Field, field_validator
from typing import List, Optional
import enum


class AssignDriverRequest(BaseModel):
    orderId: str = Field(..., min_length=1)
    driverId: Optional[str] = None


class AcceptDeliveryRequest(BaseModel):
    orderId: str = Field(..., min_length=1)


class DeliveryStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)  # in_delivery, delivered (any case)


class OptimizationStrategy(str, enum.Enum):
    DISTANCE = "DISTANCE"
    TIME = "TIME"
    BALANCED = "BALANCED"


class BatchOrderItem(BaseModel):
    orderId: str = Field(..., min_length=1)
    driverId: Optional[str] = None


class BatchOptimizeRequest(BaseModel):
    orders: List[BatchOrderItem] = Field(..., min_length=1)
    optimizationStrategy: OptimizationStrategy = OptimizationStrategy.BALANCED

    @field_validator("orders")
    @classmethod
    def unique_order_ids(cls, orders):
        order_ids = [item.orderId for item in orders]
        if len(order_ids) != len(set(order_ids)):
            raise ValueError("Each order can only appear once in a batch")
        return orders


class LocationUpdate(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    isActive: Optional[bool] = None
    status: Optional[str] = None  # online, offline
    currentOrderId: Optional[str] = None
