"""
Sale transaction processing.

SAFETY MODEL:
- Validate every line (existence, stock) before any write
- Prices are re-read from the batch at the moment of sale, never from the client
- Stock is lowered with conditional UPDATEs; the sale number comes from an
  atomically bumped per-pharmacy counter
- Decrements, counter bump and the Sale insert commit as one transaction;
  any failure rolls all of it back
"""
import logging
from collections import defaultdict
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, or_, update
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pharmacy.core.audit import AuditLog
from pharmacy.core.config import settings
from pharmacy.core.exceptions import (
    ConflictError,
    DrugNotFoundError,
    InsufficientStockError,
    NotFoundError,
    PharmacyError,
    StorageFailure,
    ValidationError,
)
from pharmacy.core.tenancy import Caller
from pharmacy.models.drug import Drug
from pharmacy.models.sale import Sale, SaleCounter, serialize_line
from pharmacy.models.user import User
from pharmacy.schemas.sale import SaleCreate
from pharmacy.services.inventory_service import decrement_stock, find_sellable
from pharmacy.services.sale_display import present_sale
from pharmacy.utils.clock import local_day_bounds, to_local, utc_now

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def format_sale_number(ordinal: int) -> str:
    return f"{settings.SALE_NUMBER_PREFIX}{ordinal:0{settings.SALE_NUMBER_DIGITS}d}"


def open_sale_counter(db: Session, pharmacy_id: int) -> None:
    """Create the pharmacy's counter row at 0 unless it already exists. Does not commit.

    Uses INSERT .. ON CONFLICT DO NOTHING (INSERT IGNORE on MySQL), so two
    transactions opening the same counter never fail on the primary key.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(SaleCounter).values(pharmacy_id=pharmacy_id, value=0)
        stmt = stmt.on_conflict_do_nothing(index_elements=["pharmacy_id"])
    elif dialect == "sqlite":
        stmt = sqlite_insert(SaleCounter).values(pharmacy_id=pharmacy_id, value=0)
        stmt = stmt.on_conflict_do_nothing(index_elements=["pharmacy_id"])
    elif dialect in ("mysql", "mariadb"):
        stmt = mysql_insert(SaleCounter).values(pharmacy_id=pharmacy_id, value=0).prefix_with("IGNORE")
    else:
        if db.get(SaleCounter, pharmacy_id) is None:
            db.add(SaleCounter(pharmacy_id=pharmacy_id, value=0))
            db.flush()
        return
    db.execute(stmt)


def _bump_counter(db: Session, pharmacy_id: int) -> int:
    return db.execute(
        update(SaleCounter)
        .where(SaleCounter.pharmacy_id == pharmacy_id)
        .values(value=SaleCounter.value + 1)
        .execution_options(synchronize_session=False)
    ).rowcount


def next_sale_number(db: Session, pharmacy_id: int) -> str:
    """Bump the pharmacy's counter in one UPDATE and format the new value.

    The row lock taken by the UPDATE is held until the sale commits, so two
    concurrent sales can never read the same value. Pharmacies get their
    counter at registration; one created any other way has it opened here
    before the bump.
    """
    if _bump_counter(db, pharmacy_id) == 0:
        open_sale_counter(db, pharmacy_id)
        _bump_counter(db, pharmacy_id)
    value = db.query(SaleCounter.value).filter(SaleCounter.pharmacy_id == pharmacy_id).scalar()
    return format_sale_number(value)


def price_line(drug: Drug, quantity: int) -> dict:
    """Line item with the batch snapshot and prices as they are right now."""
    unit_price = _money(drug.price)
    total_price = _money(unit_price * quantity)
    line = {
        "drug_id": drug.id,
        "drug_name": drug.name,
        "batch_no": drug.batch_no,
        "category": drug.category,
        "quantity": quantity,
        "unit_price": unit_price,
        "total_price": total_price,
        "cost_price": None,
        "line_cost": None,
        "profit": Decimal("0.00"),
    }
    if drug.cost_price is not None:
        cost_price = _money(drug.cost_price)
        line_cost = _money(cost_price * quantity)
        line["cost_price"] = cost_price
        line["line_cost"] = line_cost
        line["profit"] = total_price - line_cost
    return line


def summarize_lines(lines: List[dict]) -> dict:
    total_amount = sum((line["total_price"] for line in lines), Decimal("0.00"))
    total_items = sum(line["quantity"] for line in lines)
    costed = [line for line in lines if line["line_cost"] is not None]

    total_cost = None
    total_profit = Decimal("0.00")
    profit_margin = Decimal("0.00")
    if costed:
        total_cost = sum((line["line_cost"] for line in costed), Decimal("0.00"))
        total_profit = total_amount - total_cost
        if total_amount > 0:
            profit_margin = _money(total_profit / total_amount * 100)

    return {
        "total_items": total_items,
        "total_amount": total_amount,
        "total_cost": total_cost,
        "total_profit": total_profit,
        "profit_margin": profit_margin,
    }


def process_sale(db: Session, caller: Caller, basket: SaleCreate) -> Sale:
    """Validate the whole basket, then decrement stock and record the sale atomically.

    Raises ValidationError (empty basket), DrugNotFoundError (line not sellable
    in this pharmacy), InsufficientStockError (stock short, including when a
    concurrent sale took it first) or StorageFailure.
    """
    if not basket.items:
        raise ValidationError("Sale must have at least one item", field="items")

    # Phase 1: validate every line. Repeated lines for one batch are checked
    # against their combined quantity.
    drugs: Dict[int, Drug] = {}
    requested: Dict[int, int] = defaultdict(int)
    for index, item in enumerate(basket.items):
        drug = drugs.get(item.drug_id) or find_sellable(db, caller.tenant_id, item.drug_id)
        if drug is None:
            raise DrugNotFoundError(item.drug_id, line=index)
        drugs[drug.id] = drug
        requested[drug.id] += item.quantity
        if drug.quantity < requested[drug.id]:
            raise InsufficientStockError(
                drug.name, drug.quantity, requested[drug.id], drug_id=drug.id, line=index
            )

    lines = [price_line(drugs[item.drug_id], item.quantity) for item in basket.items]
    totals = summarize_lines(lines)

    created_at = utc_now()
    local = to_local(created_at)

    # Phase 2: commit everything or nothing.
    try:
        for drug_id, quantity in requested.items():
            decrement_stock(db, drug_id, quantity, pharmacy_id=caller.tenant_id)

        sale = Sale(
            sale_number=next_sale_number(db, caller.tenant_id),
            pharmacy_id=caller.tenant_id,
            sold_by_id=caller.user_id,
            items=[serialize_line(line) for line in lines],
            payment_method=basket.payment_method or "cash",
            customer_name=(basket.customer_name or "").strip(),
            customer_phone=(basket.customer_phone or "").strip(),
            status="completed",
            day_of_week=local.strftime("%A"),
            month=local.strftime("%B"),
            year=local.year,
            hour=local.hour,
            created_at=created_at,
            **totals,
        )
        db.add(sale)
        db.commit()
    except PharmacyError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageFailure(e)

    db.refresh(sale)
    logger.info(
        f"Sale {sale.sale_number} recorded for pharmacy {sale.pharmacy_id}: "
        f"{sale.total_items} items, amount {sale.total_amount}"
    )
    AuditLog.log_action(
        "create", "sale", sale.id, caller.user_id, caller.tenant_id,
        changes={"sale_number": sale.sale_number, "total_amount": sale.total_amount},
    )
    return sale


def change_sale_status(db: Session, caller: Caller, sale_id: int, status: str) -> Sale:
    """completed -> cancelled | refunded. Stock is not restored."""
    sale = get_sale(db, caller.tenant_id, sale_id)
    if not sale.can_transition_to(status):
        raise ConflictError(
            f"Cannot change sale {sale.sale_number} from {sale.status} to {status}",
            status=sale.status,
        )
    previous = sale.status
    sale.status = status
    db.commit()
    db.refresh(sale)

    AuditLog.log_action(
        "status", "sale", sale.id, caller.user_id, caller.tenant_id,
        changes={"from": previous, "to": status},
    )
    return sale


# ==============================================================================
# READS
# ==============================================================================

def get_sale(db: Session, pharmacy_id: int, sale_id: int) -> Sale:
    sale = db.query(Sale).filter(Sale.id == sale_id, Sale.pharmacy_id == pharmacy_id).first()
    if not sale:
        raise NotFoundError("Sale not found", sale_id=sale_id)
    return sale


def list_sales(
    db: Session,
    pharmacy_id: int,
    page: int = 1,
    limit: int = 10,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
    payment_method: Optional[str] = None,
) -> Tuple[List[Sale], int, Decimal]:
    """Completed sales, newest first, with the total count and revenue of the filter."""
    q = db.query(Sale).filter(Sale.pharmacy_id == pharmacy_id, Sale.status == "completed")
    if start_date:
        q = q.filter(Sale.created_at >= local_day_bounds(start_date)[0])
    if end_date:
        q = q.filter(Sale.created_at < local_day_bounds(end_date)[1])
    if payment_method and payment_method != "all":
        q = q.filter(Sale.payment_method == payment_method)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(Sale.sale_number.ilike(pattern), Sale.customer_name.ilike(pattern)))

    total = q.count()
    revenue = q.with_entities(func.coalesce(func.sum(Sale.total_amount), 0)).scalar()
    sales = (
        q.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return sales, total, Decimal(str(revenue))


def recent_sales(db: Session, pharmacy_id: int, limit: int = 5) -> List[Sale]:
    return (
        db.query(Sale)
        .filter(Sale.pharmacy_id == pharmacy_id, Sale.status == "completed")
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .limit(limit)
        .all()
    )


def sales_between(db: Session, pharmacy_id: int, start: datetime, end: datetime) -> List[Sale]:
    """Completed sales with start <= created_at < end (UTC bounds)."""
    return (
        db.query(Sale)
        .filter(
            Sale.pharmacy_id == pharmacy_id,
            Sale.status == "completed",
            Sale.created_at >= start,
            Sale.created_at < end,
        )
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .all()
    )


def present_sales(db: Session, sales: Iterable[Sale]) -> List[dict]:
    """Display projection for a batch of sales, resolving sellers and drugs in two queries."""
    sales = list(sales)
    seller_ids = {s.sold_by_id for s in sales if s.sold_by_id is not None}
    drug_ids = {line["drug_id"] for s in sales for line in (s.items or [])}

    sellers = {u.id: u for u in db.query(User).filter(User.id.in_(seller_ids)).all()} if seller_ids else {}
    drugs = {d.id: d for d in db.query(Drug).filter(Drug.id.in_(drug_ids)).all()} if drug_ids else {}

    return [present_sale(s, sellers.get(s.sold_by_id), drugs) for s in sales]


def daily_sales(db: Session, pharmacy_id: int, day: date) -> Tuple[List[Sale], dict]:
    """Completed sales of one local calendar day and their totals."""
    start, end = local_day_bounds(day)
    sales = sales_between(db, pharmacy_id, start, end)
    summary = {
        "date": day.isoformat(),
        "total_sales": len(sales),
        "total_revenue": float(sum((s.total_amount for s in sales), Decimal("0"))),
        "total_profit": float(sum((s.total_profit or 0 for s in sales), Decimal("0"))),
        "total_items": sum(s.total_items for s in sales),
    }
    return sales, summary
