"""Reports: sales, stock and analytics reports plus CSV export."""
import csv
import io
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from pharmacy.api.deps import get_caller, get_db, require_roles
from pharmacy.core.tenancy import Caller
from pharmacy.models.drug import Drug
from pharmacy.services import report_service
from pharmacy.utils.clock import local_today, to_local

router = APIRouter()

# Cashiers work the till; reports are for the people running the pharmacy.
report_readers = require_roles("admin", "pharmacist")


@router.get("/sales")
def sales_report(
    period: str = Query("daily", description="daily, weekly, monthly or yearly"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(report_readers),
):
    return {"success": True, "report": report_service.sales_report(db, caller.tenant_id, period)}


@router.get("/stock")
def stock_report(db: Session = Depends(get_db), caller: Caller = Depends(report_readers)):
    return {"success": True, "report": report_service.stock_report(db, caller.tenant_id)}


@router.get("/analytics")
def analytics_report(
    period: str = Query("monthly", description="daily, weekly, monthly or yearly"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(report_readers),
):
    return {"success": True, "analytics": report_service.analytics(db, caller.tenant_id, period)}


# ==============================================================================
# EXPORT ENDPOINTS (CSV Download)
# ==============================================================================

@router.get("/export/sales")
def export_sales_csv(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(report_readers),
):
    """Export completed sales in a date range (default: the last 30 days) as CSV."""
    default_start, default_end = report_service.period_window("monthly")
    start = start_date or default_start
    end = end_date or default_end
    sales = report_service.period_sales(db, caller.tenant_id, start, end)

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "Sale Number", "Date", "Time", "Customer", "Payment Method",
        "Items", "Total Amount", "Total Cost", "Profit", "Status",
    ])
    for s in sales:
        local = to_local(s.created_at)
        writer.writerow([
            s.sale_number,
            local.strftime("%Y-%m-%d"),
            local.strftime("%H:%M"),
            s.customer_name,
            s.payment_method,
            s.total_items,
            f"{s.total_amount:.2f}",
            f"{s.total_cost:.2f}" if s.total_cost is not None else "",
            f"{s.total_profit:.2f}",
            s.status,
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=sales_{start}_{end}.csv"},
    )


@router.get("/export/inventory")
def export_inventory_csv(db: Session = Depends(get_db), caller: Caller = Depends(report_readers)):
    """Export active batches as CSV."""
    drugs = (
        db.query(Drug)
        .filter(Drug.pharmacy_id == caller.tenant_id, Drug.is_active.is_(True))
        .order_by(Drug.name, Drug.batch_no)
        .all()
    )

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "Name", "Category", "Batch No", "Quantity", "Price", "Cost Price",
        "Expiry Date", "Supplier", "Min Stock Level", "Status",
    ])
    for d in drugs:
        if d.is_expired:
            state = "Expired"
        elif d.quantity == 0:
            state = "Out of Stock"
        elif d.is_low_stock:
            state = "Low Stock"
        else:
            state = "In Stock"
        writer.writerow([
            d.name,
            d.category,
            d.batch_no,
            d.quantity,
            f"{d.price:.2f}",
            f"{d.cost_price:.2f}",
            d.expiry_date.isoformat(),
            d.supplier,
            d.min_stock_level,
            state,
        ])

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=inventory_{local_today()}.csv"},
    )
