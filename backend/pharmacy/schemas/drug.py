from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class DrugCreate(BaseModel):
    name: str
    category: str
    batch_no: str
    quantity: int = Field(..., ge=0)
    price: Decimal = Field(..., ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)  # defaults to price
    expiry_date: date
    supplier: str
    min_stock_level: Optional[int] = Field(None, ge=0)

    @field_validator("name", "category", "batch_no", "supplier")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class DrugUpdate(BaseModel):
    name: Optional[str] = None
    category: Optional[str] = None
    batch_no: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)
    price: Optional[Decimal] = Field(None, ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    expiry_date: Optional[date] = None
    supplier: Optional[str] = None
    min_stock_level: Optional[int] = Field(None, ge=0)

    @field_validator("name", "category", "batch_no", "supplier")
    @classmethod
    def not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class DrugResponse(BaseModel):
    id: int
    name: str
    category: str
    batch_no: str
    quantity: int
    price: float
    cost_price: float
    expiry_date: date
    supplier: str
    min_stock_level: int
    is_active: bool
    pharmacy_id: int
    created_by_id: Optional[int] = None
    is_low_stock: bool
    is_expired: bool
    is_near_expiry: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DrugPage(BaseModel):
    drugs: List[DrugResponse]
    total_pages: int
    current_page: int
    total: int
    categories: List[str]
