"""
Sale: a completed point-of-sale transaction.

Line items live in an embedded JSON list and carry a snapshot of the drug
(name, batch, category, prices) as it was when sold. Money values inside the
list are decimal strings so totals reconcile exactly.

Once inserted a sale only changes status (completed -> cancelled/refunded);
the mapper events below refuse any other update and any delete.
"""
from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON

from pharmacy.core.exceptions import ConflictError
from pharmacy.db.base import Base

PAYMENT_METHODS = ("cash", "card", "mobile_money")
SALE_STATUSES = ("completed", "cancelled", "refunded")

# completed is the only state a sale can leave
STATUS_TRANSITIONS = {
    "completed": ("cancelled", "refunded"),
    "cancelled": (),
    "refunded": (),
}

_MONEY_FIELDS = ("unit_price", "total_price", "cost_price", "line_cost", "profit")
_MUTABLE_COLUMNS = {"status", "updated_at"}


class Sale(Base):
    __tablename__ = "sales"
    __table_args__ = (
        UniqueConstraint("pharmacy_id", "sale_number", name="uq_sales_pharmacy_number"),
        CheckConstraint("total_items >= 1", name="ck_sales_total_items_positive"),
        CheckConstraint("total_amount >= 0", name="ck_sales_total_amount_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sale_number = Column(String(32), nullable=False, index=True)
    pharmacy_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    sold_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    items = Column(JSON, nullable=False)
    total_items = Column(Integer, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    total_cost = Column(Numeric(12, 2), nullable=True)  # NULL when no line had cost data
    total_profit = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    profit_margin = Column(Numeric(7, 2), nullable=False, default=Decimal("0"))  # percent
    payment_method = Column(String(32), nullable=False, default="cash", index=True)
    customer_name = Column(String(255), nullable=False, default="")
    customer_phone = Column(String(64), nullable=False, default="")
    status = Column(String(32), nullable=False, default="completed", index=True)
    # Analytics snapshot in the deployment time zone
    day_of_week = Column(String(16), nullable=False, index=True)
    month = Column(String(16), nullable=False)
    year = Column(Integer, nullable=False)
    hour = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    sold_by = relationship("User", foreign_keys=[sold_by_id])

    @property
    def line_items(self) -> List[Dict[str, Any]]:
        """Items with money fields parsed back to Decimal."""
        parsed = []
        for raw in self.items or []:
            line = dict(raw)
            for key in _MONEY_FIELDS:
                if line.get(key) is not None:
                    line[key] = Decimal(line[key])
            parsed.append(line)
        return parsed

    def can_transition_to(self, status: str) -> bool:
        return status in STATUS_TRANSITIONS.get(self.status, ())

    def __repr__(self):
        return f"<Sale id={self.id} number={self.sale_number} status={self.status}>"


class SaleCounter(Base):
    """Last issued sale ordinal per pharmacy, bumped with one atomic UPDATE."""

    __tablename__ = "sale_counters"

    pharmacy_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    value = Column(Integer, nullable=False, default=0)


def serialize_line(line: Dict[str, Any]) -> Dict[str, Any]:
    stored = dict(line)
    for key in _MONEY_FIELDS:
        if stored.get(key) is not None:
            stored[key] = str(stored[key])
    return stored


@event.listens_for(Sale, "before_update")
def _reject_sale_edits(mapper, connection, target):
    state = inspect(target)
    for attr in mapper.column_attrs:
        if attr.key in _MUTABLE_COLUMNS:
            continue
        if state.attrs[attr.key].history.has_changes():
            raise ConflictError(
                f"Sale {target.sale_number} is immutable; only its status can change",
                field=attr.key,
            )


@event.listens_for(Sale, "before_delete")
def _reject_sale_delete(mapper, connection, target):
    raise ConflictError(f"Sale {target.sale_number} cannot be deleted; cancel or refund it instead")
