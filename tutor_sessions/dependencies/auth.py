# tutor_sessions/dependencies/auth.py
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from tutor_sessions.core.exceptions import AccountDeactivated, AuthenticationFailed
from tutor_sessions.core.security import verify_access_token
from tutor_sessions.db.session import get_db
from tutor_sessions.models.user import User, UserRole

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the Bearer token to an active user.

    The user row is re-read on every request so deactivation takes effect
    immediately, not when the token expires.
    """
    if credentials is None:
        raise AuthenticationFailed("No authorization header provided").to_http_exception()

    payload = verify_access_token(credentials.credentials)
    # purpose-scoped tokens (OAuth state) are not sessions
    if not payload or not payload.get("sub") or payload.get("purpose"):
        raise AuthenticationFailed("Invalid or expired token").to_http_exception()

    user = db.get(User, payload["sub"])
    if user is None:
        raise AuthenticationFailed("User not found").to_http_exception()
    if not user.is_active:
        raise AccountDeactivated().to_http_exception()

    return user


def require_roles(*roles: UserRole):
    """Dependency factory: allow only users whose role is in `roles`."""
    allowed = {UserRole(r).value for r in roles}

    def checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            logger.info("User %s with role %s denied (needs %s)", user.id, user.role, allowed)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Forbidden: You do not have permission to access this resource",
            )
        return user

    return checker
