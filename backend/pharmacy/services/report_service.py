"""
Reports and dashboard aggregates.

Provides aggregated data for:
- Dashboard cards, alerts and recent sales
- Inventory overview and stock report
- Sales statistics / sales report per period (totals, payment methods,
  top-selling drugs, daily trend)
- Analytics (categories, hourly distribution, top customers)

Line items are embedded JSON, so item-level figures are folded in Python over
the period's sales; drug-level figures are SQL aggregates.
"""
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from pharmacy.core.exceptions import ValidationError
from pharmacy.models.drug import Drug
from pharmacy.models.sale import Sale
from pharmacy.services import inventory_service, sale_service
from pharmacy.utils.clock import local_day_bounds, local_today, to_local

# Window length in days, ending today (inclusive)
PERIOD_DAYS = {
    "today": 1,
    "daily": 1,
    "week": 7,
    "weekly": 7,
    "month": 30,
    "monthly": 30,
    "year": 365,
    "yearly": 365,
}

ALERT_LIMIT = 5


def period_window(period: str, today: Optional[date] = None) -> Tuple[date, date]:
    """Local calendar dates [start, end] covered by `period`."""
    if period not in PERIOD_DAYS:
        raise ValidationError(
            f"Unknown period '{period}'",
            field="period",
            allowed=sorted(PERIOD_DAYS),
        )
    end = today or local_today()
    return end - timedelta(days=PERIOD_DAYS[period] - 1), end


def period_sales(db: Session, pharmacy_id: int, start: date, end: date) -> List[Sale]:
    return sale_service.sales_between(
        db, pharmacy_id, local_day_bounds(start)[0], local_day_bounds(end)[1]
    )


# ==============================================================================
# FOLDS OVER SALES
# ==============================================================================

def summarize_sales(sales: List[Sale]) -> dict:
    amounts = [Decimal(s.total_amount) for s in sales]
    revenue = sum(amounts, Decimal("0"))
    return {
        "total_sales": len(sales),
        "total_revenue": float(revenue),
        "total_profit": float(sum((Decimal(s.total_profit or 0) for s in sales), Decimal("0"))),
        "total_items": sum(s.total_items for s in sales),
        "average_sale": round(float(revenue / len(sales)), 2) if sales else 0,
        "max_sale": float(max(amounts)) if amounts else 0,
        "min_sale": float(min(amounts)) if amounts else 0,
    }


def payment_breakdown(sales: List[Sale]) -> List[dict]:
    buckets: Dict[str, dict] = {}
    for s in sales:
        b = buckets.setdefault(s.payment_method, {"count": 0, "revenue": Decimal("0")})
        b["count"] += 1
        b["revenue"] += Decimal(s.total_amount)
    return [
        {"payment_method": method, "count": b["count"], "revenue": float(b["revenue"])}
        for method, b in sorted(buckets.items(), key=lambda kv: kv[1]["revenue"], reverse=True)
    ]


def top_selling(sales: List[Sale], limit: int = 10) -> List[dict]:
    """Drugs ranked by revenue over the sales' line snapshots."""
    totals: Dict[int, dict] = {}
    for s in sales:
        for line in s.line_items:
            t = totals.setdefault(
                line["drug_id"],
                {
                    "drug_id": line["drug_id"],
                    "drug_name": line.get("drug_name"),
                    "category": line.get("category"),
                    "quantity": 0,
                    "revenue": Decimal("0"),
                    "lines": 0,
                    "price_sum": Decimal("0"),
                },
            )
            t["quantity"] += line["quantity"]
            t["revenue"] += line["total_price"]
            t["lines"] += 1
            t["price_sum"] += line["unit_price"]

    ranked = sorted(totals.values(), key=lambda t: (t["revenue"], t["quantity"]), reverse=True)[:limit]
    return [
        {
            "drug_id": t["drug_id"],
            "drug_name": t["drug_name"],
            "category": t["category"],
            "quantity": t["quantity"],
            "revenue": float(t["revenue"]),
            "average_price": round(float(t["price_sum"] / t["lines"]), 2),
        }
        for t in ranked
    ]


def daily_trend(sales: List[Sale], start: date, end: date) -> List[dict]:
    """One entry per local day in [start, end], zero-filled."""
    by_day: Dict[date, dict] = defaultdict(lambda: {"sales": 0, "revenue": Decimal("0")})
    for s in sales:
        d = to_local(s.created_at).date()
        by_day[d]["sales"] += 1
        by_day[d]["revenue"] += Decimal(s.total_amount)

    trend = []
    d = start
    while d <= end:
        bucket = by_day.get(d, {"sales": 0, "revenue": Decimal("0")})
        trend.append({
            "date": d.isoformat(),
            "label": d.strftime("%d %b"),
            "day": d.strftime("%a"),
            "total_sales": bucket["sales"],
            "total_revenue": float(bucket["revenue"]),
        })
        d += timedelta(days=1)
    return trend


def hourly_distribution(sales: List[Sale]) -> List[dict]:
    hours = [{"hour": h, "total_sales": 0, "total_revenue": 0.0} for h in range(24)]
    for s in sales:
        hours[s.hour]["total_sales"] += 1
        hours[s.hour]["total_revenue"] += float(s.total_amount)
    return hours


def category_sales(sales: List[Sale]) -> List[dict]:
    totals: Dict[str, dict] = defaultdict(lambda: {"quantity": 0, "revenue": Decimal("0")})
    for s in sales:
        for line in s.line_items:
            t = totals[line.get("category") or "Uncategorized"]
            t["quantity"] += line["quantity"]
            t["revenue"] += line["total_price"]
    return [
        {"category": c, "quantity": t["quantity"], "revenue": float(t["revenue"])}
        for c, t in sorted(totals.items(), key=lambda kv: kv[1]["revenue"], reverse=True)
    ]


def top_customers(sales: List[Sale], limit: int = 10) -> List[dict]:
    # Walk-in sales (no customer name) are not customers
    totals: Dict[str, dict] = {}
    for s in sales:
        if not s.customer_name:
            continue
        key = s.customer_phone or s.customer_name
        t = totals.setdefault(key, {
            "customer_name": s.customer_name,
            "customer_phone": s.customer_phone,
            "purchases": 0,
            "spent": Decimal("0"),
            "last_purchase": s.created_at,
        })
        t["purchases"] += 1
        t["spent"] += Decimal(s.total_amount)
        if s.created_at > t["last_purchase"]:
            t["last_purchase"] = s.created_at

    ranked = sorted(totals.values(), key=lambda t: t["spent"], reverse=True)[:limit]
    return [
        {
            "customer_name": t["customer_name"],
            "customer_phone": t["customer_phone"],
            "total_purchases": t["purchases"],
            "total_spent": float(t["spent"]),
            "last_purchase": to_local(t["last_purchase"]).isoformat(),
        }
        for t in ranked
    ]


# ==============================================================================
# DASHBOARD
# ==============================================================================

def dashboard(db: Session, pharmacy_id: int, today: Optional[date] = None) -> dict:
    """Cards, alerts and recent sales for the home screen."""
    today = today or local_today()
    stats = inventory_service.drug_statistics(db, pharmacy_id, today=today)["statistics"]
    today_sales = period_sales(db, pharmacy_id, today, today)
    near_expiry = inventory_service.near_expiry_drugs(db, pharmacy_id, today=today)
    low_stock = inventory_service.low_stock_drugs(db, pharmacy_id)

    return {
        "summary": {
            "total_drugs": stats["total_drugs"],
            "total_sales": float(sum((s.total_amount for s in today_sales), Decimal("0"))),
            "today_sales_count": len(today_sales),
            "today_profit": float(sum((s.total_profit or 0 for s in today_sales), Decimal("0"))),
            "low_stock": stats["low_stock_count"],
            "expired_drugs": stats["expired_count"],
            "near_expiry": len(near_expiry),
        },
        "alerts": {
            "low_stock": [
                {
                    "id": d.id,
                    "type": "low-stock",
                    "message": f"{d.name} stock is low ({d.quantity} units remaining)",
                    "drug": d.name,
                    "batch_no": d.batch_no,
                }
                for d in low_stock[:ALERT_LIMIT]
            ],
            "near_expiry": [
                {
                    "id": d.id,
                    "type": "expiry",
                    "message": f"{d.name} expires on {d.expiry_date.isoformat()}",
                    "drug": d.name,
                    "batch_no": d.batch_no,
                    "days_until_expiry": (d.expiry_date - today).days,
                }
                for d in near_expiry[:ALERT_LIMIT]
            ],
        },
        "recent_sales": sale_service.present_sales(db, sale_service.recent_sales(db, pharmacy_id)),
    }


def inventory_overview(db: Session, pharmacy_id: int) -> dict:
    row = (
        db.query(
            func.count(Drug.id).label("total_items"),
            func.coalesce(func.sum(Drug.quantity), 0).label("total_quantity"),
            func.coalesce(func.sum(Drug.quantity * Drug.price), 0).label("total_value"),
            func.coalesce(func.sum(Drug.quantity * Drug.cost_price), 0).label("total_cost_value"),
            func.coalesce(func.sum(case((Drug.quantity <= 0, 1), else_=0)), 0).label("out_of_stock"),
            func.coalesce(func.sum(case((Drug.quantity <= Drug.min_stock_level, 1), else_=0)), 0).label("low_stock"),
        )
        .filter(Drug.pharmacy_id == pharmacy_id, Drug.is_active.is_(True))
        .one()
    )
    low_stock_items = inventory_service.low_stock_drugs(db, pharmacy_id)[:10]

    return {
        "overview": {
            "total_items": row.total_items,
            "total_quantity": int(row.total_quantity),
            "total_value": float(row.total_value),
            "total_cost_value": float(row.total_cost_value),
            "out_of_stock": int(row.out_of_stock),
            "low_stock": int(row.low_stock),
        },
        "categories": inventory_service.drug_statistics(db, pharmacy_id)["category_distribution"],
        "low_stock_items": [
            {
                "id": d.id,
                "name": d.name,
                "quantity": d.quantity,
                "price": float(d.price),
                "category": d.category,
                "min_stock_level": d.min_stock_level,
            }
            for d in low_stock_items
        ],
    }


# ==============================================================================
# REPORTS
# ==============================================================================

def sales_statistics(db: Session, pharmacy_id: int, period: str = "today", today: Optional[date] = None) -> dict:
    start, end = period_window(period, today)
    sales = period_sales(db, pharmacy_id, start, end)
    return {
        "period": period,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "statistics": summarize_sales(sales),
        "payment_breakdown": payment_breakdown(sales),
        "top_selling": top_selling(sales),
        "sales_trend": daily_trend(sales, start, end),
    }


def sales_report(db: Session, pharmacy_id: int, period: str = "daily", today: Optional[date] = None) -> dict:
    """Same figures as sales_statistics, keyed the way the report screen reads them."""
    stats = sales_statistics(db, pharmacy_id, period, today)
    return {
        "period": stats["period"],
        "start_date": stats["start_date"],
        "end_date": stats["end_date"],
        "summary": stats["statistics"],
        "top_selling": stats["top_selling"],
        "payment_methods": stats["payment_breakdown"],
        "daily_trend": stats["sales_trend"],
    }


def stock_report(db: Session, pharmacy_id: int, today: Optional[date] = None) -> dict:
    today = today or local_today()
    overview = inventory_overview(db, pharmacy_id)["overview"]
    stats = inventory_service.drug_statistics(db, pharmacy_id, today=today)
    expired = inventory_service.expired_drugs(db, pharmacy_id, today=today)

    return {
        "summary": {
            "total_drugs": overview["total_items"],
            "total_value": overview["total_value"],
            "total_quantity": overview["total_quantity"],
            "low_stock": overview["low_stock"],
            "out_of_stock": overview["out_of_stock"],
            "expired": stats["statistics"]["expired_count"],
        },
        "categories": stats["category_distribution"],
        "low_stock": [
            {
                "id": d.id,
                "name": d.name,
                "batch_no": d.batch_no,
                "category": d.category,
                "quantity": d.quantity,
                "min_stock_level": d.min_stock_level,
                "price": float(d.price),
            }
            for d in inventory_service.low_stock_drugs(db, pharmacy_id)[:20]
        ],
        "expired": [
            {
                "id": d.id,
                "name": d.name,
                "batch_no": d.batch_no,
                "quantity": d.quantity,
                "expiry_date": d.expiry_date.isoformat(),
            }
            for d in expired[:20]
        ],
    }


def analytics(db: Session, pharmacy_id: int, period: str = "monthly", today: Optional[date] = None) -> dict:
    start, end = period_window(period, today)
    sales = period_sales(db, pharmacy_id, start, end)
    trend = daily_trend(sales, start, end)
    customers = top_customers(sales)
    active_days = [d for d in trend if d["total_sales"]]
    revenue = sum(d["total_revenue"] for d in trend)

    return {
        "period": period,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "sales_trend": trend,
        "top_drugs": top_selling(sales, limit=15),
        "categories": category_sales(sales),
        "hourly_distribution": hourly_distribution(sales),
        "top_customers": customers,
        "payment_distribution": payment_breakdown(sales),
        "summary": {
            "total_period_sales": len(sales),
            "total_period_revenue": round(revenue, 2),
            "average_daily_revenue": round(revenue / len(active_days), 2) if active_days else 0,
            "unique_customers": len(customers),
        },
    }
