"""
Delivery dispatch endpoints
Single order driver assignment and batch route planning
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from dispatch.database import get_db
from dispatch.api.deps import require_roles, get_event_bus
from dispatch.events import EventBus, serialize_order
from dispatch.models.user import User, UserRole
from dispatch.schemas.common import ResponseModel
from dispatch.schemas.delivery import AssignDriverRequest, BatchOptimizeRequest
from dispatch.services import assignment_service

router = APIRouter()


@router.post("/assign-nearest-driver", response_model=ResponseModel)
async def assign_nearest_driver(
    payload: AssignDriverRequest,
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.VENDOR)),
    bus: EventBus = Depends(get_event_bus),
    db: Session = Depends(get_db)
):
    """
    Assign a driver to a READY (or reassign an ASSIGNED) order.
    Without driverId the first available driver is picked.
    """
    order = assignment_service.assign_driver(
        db, bus, payload.orderId, current_user, driver_id=payload.driverId
    )
    return ResponseModel(
        success=True,
        data={
            "order": serialize_order(order),
            "driverId": order.driver_id,
            "message": "Driver assigned successfully",
        },
        message="Driver assigned successfully"
    )


@router.post("/batch-optimize", response_model=ResponseModel)
async def batch_optimize(
    payload: BatchOptimizeRequest,
    current_user: User = Depends(require_roles(UserRole.ADMIN, UserRole.DRIVER)),
    db: Session = Depends(get_db)
):
    """Propose routes for a set of orders. Nothing is assigned."""
    items = [(item.orderId, item.driverId) for item in payload.orders]
    plan = assignment_service.optimize_batch(db, items, payload.optimizationStrategy.value)
    return ResponseModel(success=True, data=plan, message=plan["message"])
