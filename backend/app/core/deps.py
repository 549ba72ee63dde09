"""
FastAPI dependencies for authentication and authorization.

WHY: Dependencies provide reusable authentication and authorization logic
that can be injected into route handlers, following the DRY principle
and ensuring consistent security across the API.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import verify_token
from app.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    TokenExpiredError,
    TokenInvalidError,
)
from app.db.session import get_db
from app.models.user import User, UserRole, STAFF_ROLES
from app.dao.user import UserDAO


# HTTP Bearer token security scheme
# WHY: HTTPBearer extracts the token from Authorization header automatically
# Format: "Authorization: Bearer <token>"
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Get current authenticated user from JWT token.

    WHY: This dependency:
    1. Extracts token from Authorization header
    2. Verifies token signature and expiration
    3. Fetches user from database
    4. Ensures user still exists, is active and not deleted

    Usage:
        @app.get("/protected")
        async def protected_route(user: User = Depends(get_current_user)):
            return {"user_id": user.id}

    Args:
        credentials: JWT token from Authorization header
        db: Database session

    Returns:
        Authenticated User instance

    Raises:
        AuthenticationError: If token is invalid, expired, or user not found
    """
    try:
        payload = verify_token(credentials.credentials)
    except (TokenExpiredError, TokenInvalidError) as e:
        # WHY: Re-raise as AuthenticationError for consistent API responses
        raise AuthenticationError(
            message=str(e),
            status_code=e.status_code,
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationError(
            message="Invalid token: missing user_id",
        )

    # WHY: Role and plan in the token might be stale; always fetch current data
    user_dao = UserDAO(User, db)
    user = await user_dao.get_by_id(user_id)

    if not user or user.is_deleted:
        raise AuthenticationError(
            message="User not found",
            user_id=user_id,
        )

    if not user.is_active:
        # WHY: Suspended accounts keep their billing data but lose access
        raise AuthenticationError(
            message="User account is inactive",
            user_id=user_id,
        )

    return user


def require_roles(*roles: UserRole):
    """
    Factory function to create a role requirement dependency.

    Usage:
        @router.get("/all")
        async def staff_route(user: User = Depends(require_roles(UserRole.ADMIN))):
            ...

    Args:
        roles: Roles allowed through

    Returns:
        Dependency function that checks the caller's role
    """
    allowed = {role.value for role in roles}

    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        """
        Raises:
            AuthorizationError: If user has none of the roles
        """
        if current_user.role.value not in allowed:
            raise AuthorizationError(
                message="Insufficient permissions",
                user_id=current_user.id,
                user_role=current_user.role.value,
                required_roles=sorted(allowed),
            )
        return current_user

    return role_checker


# Admins and moderators manage other users' subscriptions and the catalog
require_staff = require_roles(*STAFF_ROLES)
