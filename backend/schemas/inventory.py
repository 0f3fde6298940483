from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


class StockRead(BaseModel):
    product_id: int
    location_id: int
    quantity: int
    reserved_quantity: int
    available_quantity: int
    updated_at: Optional[datetime] = None


class StockTransactionRead(BaseModel):
    id: int
    transaction_type: str
    kind: str
    product_id: int
    quantity: int
    from_location_id: Optional[int] = None
    to_location_id: Optional[int] = None
    reference_id: Optional[str] = None
    reference_type: Optional[str] = None
    actor_id: UUID
    notes: Optional[str] = None
    created_at: datetime


class StockAdjustRequest(BaseModel):
    product_id: int
    location_id: int
    quantity: int  # signed delta
    reason: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def _non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("quantity must be non-zero")
        return v

    @field_validator("reason")
    @classmethod
    def _strip(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class StockTransferRequest(BaseModel):
    product_id: int
    from_location_id: int
    to_location_id: int
    quantity: int
    notes: Optional[str] = None


class StockReservationRequest(BaseModel):
    product_id: int
    location_id: int
    quantity: int
    reference_id: str
    reference_type: str

    @field_validator("reference_id", "reference_type")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v


class LowStockRead(BaseModel):
    product_id: int
    sku: str
    name: str
    total_quantity: int
    threshold: int
    deficit: int
    reorder_quantity: int
    stock: List[StockRead]
