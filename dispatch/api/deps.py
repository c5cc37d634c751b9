"""
Request dependencies: database session, caller identity, roles, event bus
"""
import logging
from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from dispatch.database import get_db
from dispatch.events import EventBus
from dispatch.exceptions import UnauthorizedError, ForbiddenError
from dispatch.models.user import User, UserRole
from dispatch.utils.security import verify_token

logger = logging.getLogger(__name__)

# auto_error=False so a missing header falls through to the ?token= lookup
http_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user"""
    auth_token = None

    if credentials and credentials.credentials:
        auth_token = credentials.credentials
    else:
        # EventSource clients cannot set headers, they pass ?token=
        auth_token = request.query_params.get("token")

    if not auth_token:
        raise UnauthorizedError("No token provided")

    user_id = verify_token(auth_token)
    if user_id is None:
        logger.debug("Token decode failed - invalid or expired token")
        raise UnauthorizedError("Invalid or expired token")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise UnauthorizedError("Could not validate credentials")

    if not user.is_active:
        raise ForbiddenError("User account is inactive")

    return user


def require_roles(*allowed_roles: UserRole):
    """
    Dependency factory for role-based access control

    Usage:
        @router.post("/endpoint")
        async def endpoint(user: User = Depends(require_roles(UserRole.ADMIN, UserRole.VENDOR))):
            ...
    """
    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed_roles:
            raise ForbiddenError(
                f"Access denied. Required roles: {[r.value for r in allowed_roles]}"
            )
        return current_user

    return role_checker


def get_event_bus(request: Request) -> EventBus:
    """The process-wide bus created in main and kept on app.state"""
    return request.app.state.event_bus
