from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from db.enums import OrderStatus


class OrderLineCreate(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)


class OrderCreate(BaseModel):
    customer_id: int
    items: List[OrderLineCreate] = Field(min_length=1)
    shipping_cost: int = Field(default=0, ge=0)
    shipping_address: Optional[str] = None
    shipping_method: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class OrderTotalsRequest(BaseModel):
    items: List[OrderLineCreate] = Field(min_length=1)
    shipping_cost: int = Field(default=0, ge=0)


class PricedLineRead(BaseModel):
    product_id: int
    quantity: int
    unit_price: int
    subtotal: int
    tax: int


class TotalsRead(BaseModel):
    subtotal: int
    tax: int
    shipping_cost: int = 0
    total: int
    items: List[PricedLineRead]


class OrderItemRead(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_price: int
    unit_cost: int
    subtotal: int
    tax: int


class OrderRead(BaseModel):
    id: int
    order_number: str
    customer_id: int
    actor_id: UUID
    status: str
    shipping_address: Optional[str] = None
    shipping_method: Optional[str] = None
    payment_method: Optional[str] = None
    paid_at: Optional[datetime] = None
    subtotal: int
    tax: int
    shipping_cost: int
    total: int
    currency: str
    notes: Optional[str] = None
    order_date: datetime
    updated_at: Optional[datetime] = None
    items: List[OrderItemRead]


class OrderUpdate(BaseModel):
    shipping_address: Optional[str] = None
    shipping_method: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


class OrderPaymentRequest(BaseModel):
    amount: int = Field(ge=0)
    payment_method: str = Field(min_length=1)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus

    @field_validator("status", mode="before")
    @classmethod
    def _upper(cls, v):
        return v.strip().upper() if isinstance(v, str) else v
