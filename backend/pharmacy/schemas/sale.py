from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class SaleLineRequest(BaseModel):
    drug_id: int
    quantity: int = Field(..., ge=1)


class SaleCreate(BaseModel):
    """Basket submitted at the till. Prices are never taken from the client."""

    items: List[SaleLineRequest] = []
    payment_method: Optional[Literal["cash", "card", "mobile_money"]] = None  # cash when omitted
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None


class SaleStatusUpdate(BaseModel):
    status: Literal["cancelled", "refunded"]
