from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from pharmacy.core.config import settings


def _check_password(v: str) -> str:
    if len(v) < settings.MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters")
    return v


class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=64)
    email: EmailStr
    password: str
    pharmacy_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("username", "pharmacy_name")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        return _check_password(v)


class StaffCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=64)
    email: EmailStr
    password: str
    role: str = "cashier"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("role")
    @classmethod
    def staff_role(cls, v: str) -> str:
        if v not in ("pharmacist", "cashier"):
            raise ValueError("Staff role must be pharmacist or cashier")
        return v

    @field_validator("password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        return _check_password(v)


class UserLogin(BaseModel):
    username: str  # username or email
    password: str


class ProfileUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=64)
    email: Optional[EmailStr] = None
    pharmacy_name: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        return _check_password(v)


class PreferencesUpdate(BaseModel):
    low_stock_alerts: Optional[bool] = None
    expiry_alerts: Optional[bool] = None
    email_reports: Optional[bool] = None
    sound_notifications: Optional[bool] = None


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    pharmacy_name: str
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str
    pharmacy_id: Optional[int] = None
    is_active: bool
    last_login: Optional[datetime] = None
    preferences: dict = {}

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Optional[UserResponse] = None
