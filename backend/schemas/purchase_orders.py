from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from db.enums import PurchaseOrderStatus
from schemas.orders import PricedLineRead


class PurchaseOrderLineCreate(BaseModel):
    product_id: int
    quantity_ordered: int = Field(gt=0)
    unit_cost: Optional[int] = Field(default=None, ge=0)


class PurchaseOrderCreate(BaseModel):
    supplier_id: int
    items: List[PurchaseOrderLineCreate] = Field(min_length=1)
    expected_delivery_date: Optional[date] = None
    notes: Optional[str] = None


class PurchaseOrderTotalsRequest(BaseModel):
    items: List[PurchaseOrderLineCreate] = Field(min_length=1)


class PurchaseOrderTotalsRead(BaseModel):
    subtotal: int
    tax: int
    total: int
    items: List[PricedLineRead]


class PurchaseOrderItemRead(BaseModel):
    id: int
    product_id: int
    quantity_ordered: int
    quantity_received: int
    quantity_outstanding: int
    unit_cost: int
    subtotal: int
    tax: int


class PurchaseOrderRead(BaseModel):
    id: int
    po_number: str
    supplier_id: int
    actor_id: UUID
    status: str
    subtotal: int
    tax: int
    total: int
    expected_delivery_date: Optional[date] = None
    notes: Optional[str] = None
    order_date: datetime
    updated_at: Optional[datetime] = None
    items: List[PurchaseOrderItemRead]


class PurchaseOrderItemUpdate(BaseModel):
    quantity_ordered: Optional[int] = Field(default=None, gt=0)
    unit_cost: Optional[int] = Field(default=None, ge=0)


class PurchaseOrderStatusUpdate(BaseModel):
    status: PurchaseOrderStatus

    @field_validator("status", mode="before")
    @classmethod
    def _upper(cls, v):
        return v.strip().upper() if isinstance(v, str) else v


class ReceiveItemLine(BaseModel):
    item_id: int
    quantity_received: int = Field(gt=0)
    location_id: int


class ReceiveItemsRequest(BaseModel):
    items: List[ReceiveItemLine] = Field(min_length=1)
