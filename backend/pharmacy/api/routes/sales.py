"""Sales: checkout, sale history, daily report, statistics and receipts."""
import math
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from pharmacy.api.deps import get_caller, get_db, require_roles
from pharmacy.core.tenancy import Caller
from pharmacy.models.user import User
from pharmacy.schemas.sale import SaleCreate, SaleStatusUpdate
from pharmacy.services import report_service, sale_service
from pharmacy.services.pdf_service import generate_receipt_pdf
from pharmacy.utils.clock import local_today

router = APIRouter()


def _present_one(db: Session, sale) -> dict:
    return sale_service.present_sales(db, [sale])[0]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_sale(
    basket: SaleCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """
    Ring up a basket. Prices come from the batches; every line is validated
    before any stock moves and the whole sale commits or nothing does.
    """
    sale = sale_service.process_sale(db, caller, basket)
    return {
        "success": True,
        "message": "Sale completed successfully",
        "sale": _present_one(db, sale),
    }


@router.get("")
def list_sales(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=200),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    payment_method: Optional[str] = Query(None, alias="paymentMethod"),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    sales, total, revenue = sale_service.list_sales(
        db,
        caller.tenant_id,
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
        search=search,
        payment_method=payment_method,
    )
    return {
        "success": True,
        "sales": sale_service.present_sales(db, sales),
        "total_pages": math.ceil(total / limit) if total else 0,
        "current_page": page,
        "total": total,
        "summary": {"total_sales": total, "total_revenue": float(revenue)},
    }


@router.get("/recent")
def recent_sales(
    limit: int = Query(5, ge=1, le=50),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    sales = sale_service.recent_sales(db, caller.tenant_id, limit=limit)
    return {"success": True, "sales": sale_service.present_sales(db, sales)}


@router.get("/daily")
def daily_sales(
    day: Optional[date] = Query(None, alias="date"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Sales of one local calendar day (today by default)."""
    sales, summary = sale_service.daily_sales(db, caller.tenant_id, day or local_today())
    return {"success": True, "summary": summary, "sales": sale_service.present_sales(db, sales)}


@router.get("/statistics")
def sales_statistics(
    period: str = Query("today", description="today, week, month or year"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    return {"success": True, **report_service.sales_statistics(db, caller.tenant_id, period)}


@router.get("/{sale_id}")
def get_sale(sale_id: int, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    sale = sale_service.get_sale(db, caller.tenant_id, sale_id)
    return {"success": True, "sale": _present_one(db, sale)}


@router.get("/{sale_id}/receipt")
def sale_receipt(sale_id: int, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    """Printable PDF receipt."""
    sale = sale_service.get_sale(db, caller.tenant_id, sale_id)
    pdf = generate_receipt_pdf(_present_one(db, sale), pharmacy=db.get(User, caller.tenant_id))
    return StreamingResponse(
        pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f"inline; filename=receipt_{sale.sale_number}.pdf"},
    )


@router.put("/{sale_id}/status")
def update_sale_status(
    sale_id: int,
    data: SaleStatusUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(require_roles("admin", "pharmacist")),
):
    """Cancel or refund a completed sale. Stock is not put back."""
    sale = sale_service.change_sale_status(db, caller, sale_id, data.status)
    return {
        "success": True,
        "message": f"Sale {sale.status}",
        "sale": _present_one(db, sale),
    }
