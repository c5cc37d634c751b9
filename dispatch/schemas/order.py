from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class OrderCreate(BaseModel):
    storeId: str = Field(..., min_length=1)
    deliveryAddress: Dict[str, Any]
    deliveryLatitude: Optional[float] = Field(None, ge=-90, le=90)
    deliveryLongitude: Optional[float] = Field(None, ge=-180, le=180)
    total: float = Field(..., ge=0)
    notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)
    reason: Optional[str] = None
