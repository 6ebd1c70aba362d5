"""
User: a pharmacy account or one of its operators.

The account that registers a pharmacy is its tenant root (pharmacy_id is NULL).
Staff created by that admin carry pharmacy_id = root id.
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON

from pharmacy.db.base import Base

ROLES = ("admin", "pharmacist", "cashier")

DEFAULT_PREFERENCES = {
    "low_stock_alerts": True,
    "expiry_alerts": True,
    "email_reports": False,
    "sound_notifications": True,
}


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    pharmacy_name = Column(String(255), nullable=False)
    phone = Column(String(64), nullable=True)
    role = Column(String(32), nullable=False, default="admin")  # admin | pharmacist | cashier
    is_active = Column(Boolean, nullable=False, default=True)
    pharmacy_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    last_login = Column(DateTime(timezone=True), nullable=True)
    preferences = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_PREFERENCES))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    pharmacy = relationship("User", remote_side=[id], backref="staff")

    @property
    def display_name(self) -> str:
        if self.first_name:
            return f"{self.first_name} {self.last_name or ''}".strip()
        return self.username

    def __repr__(self):
        return f"<User id={self.id} username={self.username} role={self.role}>"
