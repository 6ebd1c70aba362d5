"""
Dashboard API: home screen cards and charts.

Provides aggregated data for:
- Today's sales, stock alerts and recent sales
- Inventory overview (value, out of stock, categories)
- Sales analytics for the trend charts
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pharmacy.api.deps import get_caller, get_db
from pharmacy.core.tenancy import Caller
from pharmacy.services import report_service

router = APIRouter()


@router.get("")
def get_dashboard(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return {"success": True, **report_service.dashboard(db, caller.tenant_id)}


@router.get("/inventory")
def get_inventory_overview(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return {"success": True, **report_service.inventory_overview(db, caller.tenant_id)}


@router.get("/analytics")
def get_sales_analytics(
    period: str = Query("week", description="week, month or year"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Trend, top sellers and payment split for the chart widgets."""
    stats = report_service.sales_statistics(db, caller.tenant_id, period)
    return {
        "success": True,
        "period": period,
        "sales_trend": stats["sales_trend"],
        "top_selling_drugs": stats["top_selling"],
        "sales_by_payment": stats["payment_breakdown"],
    }
