"""Display projection of a stored sale: localized date/time, seller name and
line items resolved against the current drug catalogue.

Pure functions, no database access; callers pass in what they looked up.
"""
from typing import Dict, Optional

from pharmacy.core.config import settings
from pharmacy.models.drug import Drug
from pharmacy.models.sale import Sale
from pharmacy.models.user import User
from pharmacy.utils.clock import to_local

SYSTEM_SELLER = {"username": "System", "name": "System"}


def _money(value) -> Optional[float]:
    return float(value) if value is not None else None


def present_seller(seller: Optional[User]) -> dict:
    if seller is None:
        return dict(SYSTEM_SELLER)
    return {"id": seller.id, "username": seller.username, "name": seller.display_name}


def present_line(line: dict, drug: Optional[Drug] = None) -> dict:
    # The snapshot is authoritative; the live batch only adds availability.
    view = {
        "drug_id": line["drug_id"],
        "drug_name": line.get("drug_name"),
        "batch_no": line.get("batch_no"),
        "category": line.get("category"),
        "quantity": line["quantity"],
        "unit_price": _money(line.get("unit_price")),
        "total_price": _money(line.get("total_price")),
        "cost_price": _money(line.get("cost_price")),
        "profit": _money(line.get("profit")),
        "drug": None,
    }
    if drug is not None:
        view["drug"] = {
            "id": drug.id,
            "name": drug.name,
            "batch_no": drug.batch_no,
            "is_active": bool(drug.is_active),
        }
    return view


def present_sale(sale: Sale, seller: Optional[User] = None, drugs: Optional[Dict[int, Drug]] = None) -> dict:
    drugs = drugs or {}
    local = to_local(sale.created_at)
    return {
        "id": sale.id,
        "sale_number": sale.sale_number,
        "pharmacy_id": sale.pharmacy_id,
        "items": [present_line(line, drugs.get(line["drug_id"])) for line in sale.line_items],
        "total_items": sale.total_items,
        "total_amount": float(sale.total_amount),
        "total_cost": _money(sale.total_cost),
        "total_profit": float(sale.total_profit or 0),
        "profit_margin": float(sale.profit_margin or 0),
        "payment_method": sale.payment_method,
        "customer_name": sale.customer_name,
        "customer_phone": sale.customer_phone,
        "status": sale.status,
        "sold_by": present_seller(seller),
        "day_of_week": sale.day_of_week,
        "month": sale.month,
        "year": sale.year,
        "hour": sale.hour,
        "created_at": local.isoformat(),
        "formatted_date": local.strftime(settings.DATE_FORMAT),
        "formatted_time": local.strftime(settings.TIME_FORMAT),
    }
