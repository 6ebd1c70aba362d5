"""FastAPI dependencies: DB session, current user from JWT and the caller's pharmacy.

SECURITY: Supports JWT from:
1. Authorization header (for API clients)
2. httpOnly cookie (for web frontend)
"""
from typing import Generator, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from pharmacy.core.audit import AuditLog
from pharmacy.core.config import settings
from pharmacy.core.exceptions import ForbiddenError, UnauthorizedError
from pharmacy.core.security import decode_access_token
from pharmacy.core.tenancy import Caller
from pharmacy.db.session import SessionLocal
from pharmacy.models.user import User

security = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> int:
    """
    Extract user ID from JWT token.
    Header takes precedence over cookie.
    """
    token = None
    if credentials:
        token = credentials.credentials
    elif settings.AUTH_COOKIE_NAME in request.cookies:
        token = request.cookies[settings.AUTH_COOKIE_NAME]

    if not token:
        raise UnauthorizedError("Not authenticated")

    sub = decode_access_token(token)
    if not sub:
        raise UnauthorizedError("Invalid or expired token")

    try:
        return int(sub)
    except ValueError:
        raise UnauthorizedError("Invalid token", reason=f"non-numeric subject {sub!r}")


def get_current_user(
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id),
) -> User:
    """Load current user from DB. Deactivated accounts are treated as unknown."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise UnauthorizedError("User not found", reason=f"token for missing user {user_id}")
    if not user.is_active:
        raise UnauthorizedError("Account is deactivated", reason=f"inactive user {user_id}")
    return user


def get_caller(user: User = Depends(get_current_user)) -> Caller:
    """Caller identity with its pharmacy (tenant) resolved once."""
    return Caller.from_user(user)


def require_roles(*roles: str):
    """Dependency factory: allow only callers with one of `roles`."""

    def checker(request: Request, caller: Caller = Depends(get_caller)) -> Caller:
        if caller.role not in roles:
            AuditLog.log_access_denied(
                request.method, request.url.path, caller.user_id, f"role {caller.role} not in {roles}"
            )
            raise ForbiddenError(f"user {caller.user_id} with role {caller.role} on {request.url.path}")
        return caller

    return checker
