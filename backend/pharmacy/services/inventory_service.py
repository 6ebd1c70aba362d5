"""Inventory ledger: pharmacy-scoped drug batches and their stock.

decrement_stock does not commit; the sale processor owns that transaction.
Every other write here commits on its own.
"""
import logging
from datetime import date, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import case, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from pharmacy.core.audit import AuditLog
from pharmacy.core.config import settings
from pharmacy.core.exceptions import (
    DrugNotFoundError,
    DuplicateBatchError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from pharmacy.core.tenancy import Caller
from pharmacy.models.drug import Drug
from pharmacy.schemas.drug import DrugCreate, DrugUpdate
from pharmacy.utils.clock import local_today

logger = logging.getLogger(__name__)


def _active(db: Session, pharmacy_id: int) -> Query:
    return db.query(Drug).filter(Drug.pharmacy_id == pharmacy_id, Drug.is_active.is_(True))


def _check_expiry(expiry_date: date) -> None:
    if expiry_date <= local_today():
        raise ValidationError("Expiry date must be in the future", field="expiry_date")


def _batch_taken(db: Session, pharmacy_id: int, batch_no: str, exclude_id: Optional[int] = None) -> bool:
    # Soft-deleted batches still own their number.
    q = db.query(Drug.id).filter(Drug.pharmacy_id == pharmacy_id, Drug.batch_no == batch_no)
    if exclude_id is not None:
        q = q.filter(Drug.id != exclude_id)
    return q.first() is not None


def find_sellable(db: Session, pharmacy_id: int, drug_id: int) -> Optional[Drug]:
    """Batch owned by the pharmacy and still active, else None."""
    return _active(db, pharmacy_id).filter(Drug.id == drug_id).first()


def get_drug(db: Session, pharmacy_id: int, drug_id: int) -> Drug:
    drug = find_sellable(db, pharmacy_id, drug_id)
    if not drug:
        raise NotFoundError("Drug not found", drug_id=drug_id)
    return drug


def decrement_stock(db: Session, drug_id: int, quantity: int, pharmacy_id: Optional[int] = None) -> Drug:
    """Subtract `quantity` in one conditional UPDATE; fail if stock is short.

    UPDATE drugs SET quantity = quantity - :n
    WHERE id = :id AND is_active AND quantity >= :n [AND pharmacy_id = :pid]

    Zero affected rows means the batch was deleted meanwhile, another sale got
    there first, or the stock never covered the request. Nothing is committed here.
    """
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", field="quantity")

    conditions = [Drug.id == drug_id, Drug.is_active.is_(True), Drug.quantity >= quantity]
    if pharmacy_id is not None:
        conditions.append(Drug.pharmacy_id == pharmacy_id)
    result = db.execute(
        update(Drug)
        .where(*conditions)
        .values(quantity=Drug.quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    drug = db.get(Drug, drug_id, populate_existing=True)
    if drug is None or not drug.is_active or (pharmacy_id is not None and drug.pharmacy_id != pharmacy_id):
        raise DrugNotFoundError(drug_id)
    if result.rowcount != 1:
        logger.info(f"Stock decrement refused for drug {drug_id}: have {drug.quantity}, need {quantity}")
        raise InsufficientStockError(drug.name, drug.quantity, quantity, drug_id=drug_id)
    return drug


def create_drug(db: Session, caller: Caller, data: DrugCreate) -> Drug:
    _check_expiry(data.expiry_date)
    if _batch_taken(db, caller.tenant_id, data.batch_no):
        raise DuplicateBatchError(data.batch_no)

    drug = Drug(
        pharmacy_id=caller.tenant_id,
        created_by_id=caller.user_id,
        name=data.name,
        category=data.category,
        batch_no=data.batch_no,
        quantity=data.quantity,
        price=data.price,
        cost_price=data.cost_price if data.cost_price is not None else data.price,
        expiry_date=data.expiry_date,
        supplier=data.supplier,
        min_stock_level=(
            data.min_stock_level if data.min_stock_level is not None
            else settings.DEFAULT_MIN_STOCK_LEVEL
        ),
    )
    db.add(drug)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent insert of the same batch
        db.rollback()
        raise DuplicateBatchError(data.batch_no)
    db.refresh(drug)

    AuditLog.log_action(
        "create", "drug", drug.id, caller.user_id, caller.tenant_id,
        changes={"name": drug.name, "batch_no": drug.batch_no, "quantity": drug.quantity},
    )
    return drug


def update_drug(db: Session, caller: Caller, drug_id: int, data: DrugUpdate) -> Drug:
    drug = get_drug(db, caller.tenant_id, drug_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)

    new_batch = changes.get("batch_no")
    if new_batch and new_batch != drug.batch_no and _batch_taken(db, caller.tenant_id, new_batch, exclude_id=drug.id):
        raise DuplicateBatchError(new_batch)
    if "expiry_date" in changes:
        _check_expiry(changes["expiry_date"])

    for field, value in changes.items():
        setattr(drug, field, value)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise DuplicateBatchError(new_batch or drug.batch_no)
    db.refresh(drug)

    AuditLog.log_action("update", "drug", drug.id, caller.user_id, caller.tenant_id, changes=changes)
    return drug


def soft_delete_drug(db: Session, caller: Caller, drug_id: int) -> Drug:
    """Hide the batch from stock and sales; past sales keep their snapshot."""
    drug = get_drug(db, caller.tenant_id, drug_id)
    drug.is_active = False
    db.commit()
    db.refresh(drug)

    AuditLog.log_action("delete", "drug", drug.id, caller.user_id, caller.tenant_id, changes={"batch_no": drug.batch_no})
    return drug


def list_drugs(
    db: Session,
    pharmacy_id: int,
    page: int = 1,
    limit: int = 50,
    search: Optional[str] = None,
    category: Optional[str] = None,
    low_stock: bool = False,
) -> Tuple[List[Drug], int, List[str]]:
    """Page of active batches, total matching and the pharmacy's categories."""
    q = _active(db, pharmacy_id)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(Drug.name.ilike(pattern), Drug.batch_no.ilike(pattern), Drug.supplier.ilike(pattern)))
    if category:
        q = q.filter(Drug.category == category)
    if low_stock:
        q = q.filter(Drug.quantity <= Drug.min_stock_level)

    total = q.count()
    drugs = (
        q.order_by(Drug.created_at.desc(), Drug.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    categories = [
        row[0]
        for row in db.query(Drug.category)
        .filter(Drug.pharmacy_id == pharmacy_id, Drug.is_active.is_(True))
        .distinct()
        .order_by(Drug.category)
        .all()
    ]
    return drugs, total, categories


# ==============================================================================
# ALERT QUERIES (pure reads)
# ==============================================================================

def low_stock_drugs(db: Session, pharmacy_id: int) -> List[Drug]:
    return (
        _active(db, pharmacy_id)
        .filter(Drug.quantity <= Drug.min_stock_level)
        .order_by(Drug.quantity.asc(), Drug.id)
        .all()
    )


def expired_drugs(db: Session, pharmacy_id: int, today: Optional[date] = None) -> List[Drug]:
    today = today or local_today()
    return (
        _active(db, pharmacy_id)
        .filter(Drug.expiry_date <= today)
        .order_by(Drug.expiry_date.asc(), Drug.id)
        .all()
    )


def near_expiry_drugs(db: Session, pharmacy_id: int, today: Optional[date] = None) -> List[Drug]:
    today = today or local_today()
    window_end = today + timedelta(days=settings.NEAR_EXPIRY_DAYS)
    return (
        _active(db, pharmacy_id)
        .filter(Drug.expiry_date > today, Drug.expiry_date <= window_end)
        .order_by(Drug.expiry_date.asc(), Drug.id)
        .all()
    )


def drug_statistics(db: Session, pharmacy_id: int, today: Optional[date] = None) -> dict:
    today = today or local_today()
    stock_value = func.coalesce(func.sum(Drug.quantity * Drug.price), 0)

    totals = (
        db.query(
            func.count(Drug.id).label("total_drugs"),
            stock_value.label("total_value"),
            func.coalesce(func.sum(case((Drug.quantity <= Drug.min_stock_level, 1), else_=0)), 0).label("low_stock"),
            func.coalesce(func.sum(case((Drug.expiry_date <= today, 1), else_=0)), 0).label("expired"),
        )
        .filter(Drug.pharmacy_id == pharmacy_id, Drug.is_active.is_(True))
        .one()
    )

    categories = (
        db.query(
            Drug.category,
            func.count(Drug.id).label("count"),
            stock_value.label("total_value"),
        )
        .filter(Drug.pharmacy_id == pharmacy_id, Drug.is_active.is_(True))
        .group_by(Drug.category)
        .order_by(func.count(Drug.id).desc(), Drug.category)
        .all()
    )

    return {
        "statistics": {
            "total_drugs": totals.total_drugs,
            "total_value": float(totals.total_value),
            "low_stock_count": int(totals.low_stock),
            "expired_count": int(totals.expired),
        },
        "category_distribution": [
            {"category": c.category, "count": c.count, "total_value": float(c.total_value)}
            for c in categories
        ],
    }
