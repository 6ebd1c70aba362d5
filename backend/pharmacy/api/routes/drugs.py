"""Drugs: pharmacy-scoped batch CRUD, listing, alerts and statistics."""
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from pharmacy.api.deps import get_caller, get_db, require_roles
from pharmacy.core.tenancy import Caller
from pharmacy.schemas.drug import DrugCreate, DrugPage, DrugResponse, DrugUpdate
from pharmacy.services import inventory_service
from pharmacy.utils.clock import local_today

router = APIRouter()

# Cashiers sell; stock is managed by admins and pharmacists.
stock_managers = require_roles("admin", "pharmacist")


def _drug_list(drugs) -> list:
    return [DrugResponse.model_validate(d).model_dump(mode="json") for d in drugs]


# ==============================================================================
# LISTING & STATISTICS
# ==============================================================================

@router.get("", response_model=DrugPage)
def list_drugs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    low_stock: bool = Query(False, alias="lowStock"),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
):
    """Active batches of the caller's pharmacy, newest first."""
    drugs, total, categories = inventory_service.list_drugs(
        db, caller.tenant_id, page=page, limit=limit, search=search, category=category, low_stock=low_stock
    )
    return DrugPage(
        drugs=[DrugResponse.model_validate(d) for d in drugs],
        total_pages=math.ceil(total / limit) if total else 0,
        current_page=page,
        total=total,
        categories=categories,
    )


@router.get("/statistics")
def drug_statistics(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return {"success": True, **inventory_service.drug_statistics(db, caller.tenant_id)}


# ==============================================================================
# ALERTS
# ==============================================================================

@router.get("/alerts/low-stock")
def low_stock_alert(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    """Batches at or below their own minimum stock level."""
    drugs = inventory_service.low_stock_drugs(db, caller.tenant_id)
    return {"success": True, "count": len(drugs), "drugs": _drug_list(drugs)}


@router.get("/alerts/expired")
def expired_alert(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    drugs = inventory_service.expired_drugs(db, caller.tenant_id)
    return {"success": True, "count": len(drugs), "drugs": _drug_list(drugs)}


@router.get("/alerts/near-expiry")
def near_expiry_alert(db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    """Batches expiring within the warning window, with days left."""
    today = local_today()
    drugs = inventory_service.near_expiry_drugs(db, caller.tenant_id, today=today)
    items = _drug_list(drugs)
    for item, drug in zip(items, drugs):
        item["days_until_expiry"] = (drug.expiry_date - today).days
    return {"success": True, "count": len(items), "drugs": items}


# ==============================================================================
# CRUD
# ==============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def create_drug(
    data: DrugCreate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(stock_managers),
):
    drug = inventory_service.create_drug(db, caller, data)
    return {
        "success": True,
        "message": "Drug added successfully",
        "drug": DrugResponse.model_validate(drug).model_dump(mode="json"),
    }


@router.get("/{drug_id}", response_model=DrugResponse)
def get_drug(drug_id: int, db: Session = Depends(get_db), caller: Caller = Depends(get_caller)):
    return inventory_service.get_drug(db, caller.tenant_id, drug_id)


@router.put("/{drug_id}")
def update_drug(
    drug_id: int,
    data: DrugUpdate,
    db: Session = Depends(get_db),
    caller: Caller = Depends(stock_managers),
):
    drug = inventory_service.update_drug(db, caller, drug_id, data)
    return {
        "success": True,
        "message": "Drug updated successfully",
        "drug": DrugResponse.model_validate(drug).model_dump(mode="json"),
    }


@router.delete("/{drug_id}")
def delete_drug(
    drug_id: int,
    db: Session = Depends(get_db),
    caller: Caller = Depends(stock_managers),
):
    """Soft delete: the batch leaves stock and sales, history keeps its snapshot."""
    drug = inventory_service.soft_delete_drug(db, caller, drug_id)
    return {"success": True, "message": "Drug deleted successfully", "id": drug.id}
