"""Auth: register, login, logout.

SECURITY FEATURES:
- Password hashing with bcrypt
- Minimum password length
- httpOnly, Secure, SameSite cookies
- Generic error on bad credentials (no user enumeration)
"""
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy import or_
from sqlalchemy.orm import Session

from pharmacy.api.deps import get_current_user, get_db
from pharmacy.core.audit import AuditLog
from pharmacy.core.config import settings
from pharmacy.core.exceptions import ConflictError, UnauthorizedError
from pharmacy.core.security import create_access_token, get_password_hash, verify_password
from pharmacy.models.user import DEFAULT_PREFERENCES, User
from pharmacy.schemas.user import Token, UserCreate, UserLogin, UserResponse
from pharmacy.services.sale_service import open_sale_counter
from pharmacy.utils.clock import utc_now

router = APIRouter()


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.AUTH_COOKIE_NAME,
        value=token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        secure=settings.SECURE_COOKIES,
        httponly=True,
        samesite=settings.SAME_SITE_COOKIE,
    )


@router.post("/register", response_model=Token, status_code=status.HTTP_201_CREATED)
def register(data: UserCreate, request: Request, response: Response, db: Session = Depends(get_db)):
    """
    Register a pharmacy. The new account is an admin and the root of its own
    pharmacy; staff are added later through /users/staff.
    """
    if db.query(User).filter(User.email == data.email).first():
        raise ConflictError("Email already registered", field="email")
    if db.query(User).filter(User.username == data.username).first():
        raise ConflictError("Username already taken", field="username")

    user = User(
        username=data.username,
        email=data.email,
        hashed_password=get_password_hash(data.password),
        pharmacy_name=data.pharmacy_name,
        phone=data.phone,
        first_name=data.first_name,
        last_name=data.last_name,
        role="admin",
        preferences=dict(DEFAULT_PREFERENCES),
    )
    db.add(user)
    db.flush()
    # Counter row exists before the first sale, so numbering is always a plain UPDATE.
    open_sale_counter(db, user.id)
    db.commit()
    db.refresh(user)

    AuditLog.log_authentication("register", user.username, _client_ip(request), True)

    token = create_access_token(subject=str(user.id))
    _set_auth_cookie(response, token)
    return Token(access_token=token, user=UserResponse.model_validate(user))


@router.post("/login", response_model=Token)
def login(data: UserLogin, request: Request, response: Response, db: Session = Depends(get_db)):
    """
    Login with username or email. Token is returned and also set in an
    httpOnly cookie for the web frontend.
    """
    login_name = data.username.strip()
    user = (
        db.query(User)
        .filter(or_(User.username == login_name, User.email == login_name))
        .first()
    )
    if not user or not verify_password(data.password, user.hashed_password):
        AuditLog.log_authentication("failed_login", login_name, _client_ip(request), False, reason="bad credentials")
        raise UnauthorizedError("Invalid credentials")
    if not user.is_active:
        AuditLog.log_authentication("failed_login", login_name, _client_ip(request), False, reason="deactivated")
        raise UnauthorizedError("Account is deactivated")

    user.last_login = utc_now()
    db.commit()
    db.refresh(user)

    AuditLog.log_authentication("login", user.username, _client_ip(request), True)

    token = create_access_token(subject=str(user.id))
    _set_auth_cookie(response, token)
    return Token(access_token=token, user=UserResponse.model_validate(user))


@router.post("/logout")
def logout(request: Request, response: Response, current_user: User = Depends(get_current_user)):
    """Logout by clearing the httpOnly cookie."""
    response.delete_cookie(
        key=settings.AUTH_COOKIE_NAME,
        secure=settings.SECURE_COOKIES,
        httponly=True,
        samesite=settings.SAME_SITE_COOKIE,
    )
    AuditLog.log_authentication("logout", current_user.username, _client_ip(request), True)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    """Get current authenticated user."""
    return current_user
