"""Users: profile, password, preferences and staff accounts of a pharmacy."""
import logging
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from pharmacy.api.deps import get_current_user, get_db, require_roles
from pharmacy.core.audit import AuditLog
from pharmacy.core.exceptions import ConflictError, NotFoundError, ValidationError
from pharmacy.core.security import get_password_hash, verify_password
from pharmacy.core.tenancy import Caller
from pharmacy.models.user import DEFAULT_PREFERENCES, User
from pharmacy.schemas.user import (
    PasswordChange,
    PreferencesUpdate,
    ProfileUpdate,
    StaffCreate,
    UserResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _ensure_unique(db: Session, user: User, username=None, email=None) -> None:
    if username and username != user.username:
        if db.query(User).filter(User.username == username, User.id != user.id).first():
            raise ConflictError("Username already taken", field="username")
    if email and email != user.email:
        if db.query(User).filter(User.email == email, User.id != user.id).first():
            raise ConflictError("Email already registered", field="email")


@router.get("/profile", response_model=UserResponse)
def get_profile(current_user: User = Depends(get_current_user)):
    return current_user


@router.put("/profile", response_model=UserResponse)
def update_profile(
    data: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if "username" in changes:
        changes["username"] = changes["username"].strip()
        if not changes["username"]:
            raise ValidationError("Username must not be blank", field="username")
    _ensure_unique(db, current_user, changes.get("username"), changes.get("email"))

    for field, value in changes.items():
        setattr(current_user, field, value)
    db.commit()
    db.refresh(current_user)

    resolved = current_user.pharmacy_id or current_user.id
    AuditLog.log_action("update", "user", current_user.id, current_user.id, resolved, changes=changes)
    return current_user


@router.put("/password")
def change_password(
    data: PasswordChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not verify_password(data.current_password, current_user.hashed_password):
        raise ValidationError("Current password is incorrect", field="current_password")

    current_user.hashed_password = get_password_hash(data.new_password)
    db.commit()
    logger.info(f"Password changed for user {current_user.id}")
    return {"success": True, "message": "Password updated successfully"}


@router.put("/preferences")
def update_preferences(
    data: PreferencesUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    # Reassign so the JSON column registers the change
    merged = dict(DEFAULT_PREFERENCES)
    merged.update(current_user.preferences or {})
    merged.update(data.model_dump(exclude_none=True))
    current_user.preferences = merged
    db.commit()
    db.refresh(current_user)
    return {"success": True, "preferences": current_user.preferences}


# ==============================================================================
# STAFF (admin only)
# ==============================================================================

@router.get("/staff", response_model=List[UserResponse])
def list_staff(
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_roles("admin")),
):
    return (
        db.query(User)
        .filter(User.pharmacy_id == caller.tenant_id)
        .order_by(User.created_at.desc(), User.id.desc())
        .all()
    )


@router.post("/staff", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def add_staff(
    data: StaffCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_roles("admin")),
):
    """Create a pharmacist or cashier account bound to the admin's pharmacy."""
    if db.query(User).filter(User.email == data.email).first():
        raise ConflictError("Email already registered", field="email")
    if db.query(User).filter(User.username == data.username).first():
        raise ConflictError("Username already taken", field="username")

    root = db.get(User, caller.tenant_id)
    staff = User(
        username=data.username.strip(),
        email=data.email,
        hashed_password=get_password_hash(data.password),
        pharmacy_name=root.pharmacy_name,
        phone=data.phone,
        first_name=data.first_name,
        last_name=data.last_name,
        role=data.role,
        pharmacy_id=caller.tenant_id,
        preferences=dict(DEFAULT_PREFERENCES),
    )
    db.add(staff)
    db.commit()
    db.refresh(staff)

    AuditLog.log_action(
        "create", "user", staff.id, caller.user_id, caller.tenant_id,
        changes={"username": staff.username, "role": staff.role},
    )
    return staff


@router.put("/staff/{user_id}/deactivate", response_model=UserResponse)
def deactivate_staff(
    user_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_roles("admin")),
):
    staff = db.query(User).filter(User.id == user_id, User.pharmacy_id == caller.tenant_id).first()
    if not staff:
        raise NotFoundError("User not found", user_id=user_id)
    staff.is_active = False
    db.commit()
    db.refresh(staff)

    AuditLog.log_action("deactivate", "user", staff.id, caller.user_id, caller.tenant_id)
    return staff
