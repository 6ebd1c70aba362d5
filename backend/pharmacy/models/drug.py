"""
Drug: one inventory batch of a medicine, owned by a single pharmacy.

Quantity is only ever lowered through a conditional UPDATE (see
inventory_service.decrement_stock); the CHECK constraint is the last line.
Rows are soft-deleted (is_active = False) so sale history stays resolvable.
"""
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from pharmacy.core.config import settings
from pharmacy.db.base import Base
from pharmacy.utils.clock import local_today


def is_expired(expiry_date: date, today: Optional[date] = None) -> bool:
    # A batch is dead from the first moment of its expiry day.
    return (today or local_today()) >= expiry_date


def is_near_expiry(expiry_date: date, today: Optional[date] = None) -> bool:
    today = today or local_today()
    window_end = today + timedelta(days=settings.NEAR_EXPIRY_DAYS)
    return not is_expired(expiry_date, today) and expiry_date <= window_end


def is_low_stock(quantity: int, min_stock_level: int) -> bool:
    return quantity <= min_stock_level


class Drug(Base):
    __tablename__ = "drugs"
    __table_args__ = (
        UniqueConstraint("pharmacy_id", "batch_no", name="uq_drugs_pharmacy_batch"),
        CheckConstraint("quantity >= 0", name="ck_drugs_quantity_non_negative"),
        CheckConstraint("price >= 0", name="ck_drugs_price_non_negative"),
        CheckConstraint("cost_price >= 0", name="ck_drugs_cost_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    pharmacy_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(255), nullable=False)
    category = Column(String(128), nullable=False, index=True)
    batch_no = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False, default=0, index=True)
    price = Column(Numeric(10, 2), nullable=False)  # per unit
    cost_price = Column(Numeric(10, 2), nullable=False)  # per unit
    expiry_date = Column(Date, nullable=False, index=True)
    supplier = Column(String(255), nullable=False)
    min_stock_level = Column(Integer, nullable=False, default=settings.DEFAULT_MIN_STOCK_LEVEL)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    created_by = relationship("User", foreign_keys=[created_by_id])

    @property
    def is_low_stock(self) -> bool:
        return is_low_stock(self.quantity, self.min_stock_level)

    @property
    def is_expired(self) -> bool:
        return is_expired(self.expiry_date)

    @property
    def is_near_expiry(self) -> bool:
        return is_near_expiry(self.expiry_date)

    def __repr__(self):
        return f"<Drug id={self.id} name={self.name} batch={self.batch_no} qty={self.quantity}>"
