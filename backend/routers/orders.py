from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from core.pricing import Totals
from db.database import get_async_session
from db.enums import OrderStatus
from db.order import Order as OrderModel
from db.users import User
from schemas.orders import (
    OrderCreate,
    OrderItemRead,
    OrderPaymentRequest,
    OrderRead,
    OrderStatusUpdate,
    OrderTotalsRequest,
    OrderUpdate,
    PricedLineRead,
    TotalsRead,
)
from services import orders as order_service

router = APIRouter()


def _serialize_order(o: OrderModel) -> OrderRead:
    return OrderRead(
        id=o.id,
        order_number=o.order_number,
        customer_id=o.customer_id,
        actor_id=o.actor_id,
        status=o.status.value,
        shipping_address=o.shipping_address,
        shipping_method=o.shipping_method,
        payment_method=o.payment_method,
        paid_at=o.paid_at,
        subtotal=o.subtotal,
        tax=o.tax,
        shipping_cost=o.shipping_cost,
        total=o.total,
        currency=o.currency,
        notes=o.notes,
        order_date=o.order_date,
        updated_at=o.updated_at,
        items=[
            OrderItemRead(
                id=it.id,
                product_id=it.product_id,
                quantity=it.quantity,
                unit_price=it.unit_price,
                unit_cost=it.unit_cost,
                subtotal=it.subtotal,
                tax=it.tax,
            )
            for it in (o.items or [])
        ],
    )


def _serialize_totals(t: Totals) -> TotalsRead:
    return TotalsRead(
        subtotal=t.subtotal,
        tax=t.tax,
        shipping_cost=t.shipping_cost,
        total=t.total,
        items=[
            PricedLineRead(
                product_id=l.product_id,
                quantity=l.quantity,
                unit_price=l.unit_price,
                subtotal=l.subtotal,
                tax=l.tax,
            )
            for l in t.lines
        ],
    )


@router.post("/", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    order = await order_service.create_order(
        db,
        payload.customer_id,
        [l.model_dump() for l in payload.items],
        actor_id=user.id,
        shipping_cost=payload.shipping_cost,
        shipping_address=payload.shipping_address,
        shipping_method=payload.shipping_method,
        payment_method=payload.payment_method,
        notes=payload.notes,
    )
    return _serialize_order(order)


@router.post("/calculate-totals", response_model=TotalsRead)
async def calculate_totals(
    payload: OrderTotalsRequest,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    totals = await order_service.calculate_order_totals(
        db, [l.model_dump() for l in payload.items], payload.shipping_cost
    )
    return _serialize_totals(totals)


@router.get("/", response_model=List[OrderRead])
async def list_orders(
    status_filter: Optional[OrderStatus] = Query(default=None, alias="status"),
    customer_id: Optional[int] = Query(default=None),
    start_date: Optional[datetime] = Query(default=None),
    end_date: Optional[datetime] = Query(default=None),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    orders = await order_service.list_orders(
        db,
        status=status_filter.value if status_filter else None,
        customer_id=customer_id,
        start_date=start_date,
        end_date=end_date,
    )
    return [_serialize_order(o) for o in orders]


@router.get("/number/{order_number}", response_model=OrderRead)
async def get_order_by_number(
    order_number: str,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    return _serialize_order(await order_service.get_order_by_number(db, order_number))


@router.get("/{order_id}", response_model=OrderRead)
async def get_order(
    order_id: int,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    return _serialize_order(await order_service.get_order(db, order_id))


@router.put("/{order_id}", response_model=OrderRead)
async def update_order(
    order_id: int,
    payload: OrderUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    data = payload.model_dump(exclude_unset=True)
    order = await order_service.update_order_details(db, order_id, **data)
    return _serialize_order(order)


@router.patch("/{order_id}/status", response_model=OrderRead)
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    order = await order_service.update_order_status(db, order_id, payload.status, actor_id=user.id)
    return _serialize_order(order)


@router.post("/{order_id}/payment", response_model=OrderRead)
async def process_payment(
    order_id: int,
    payload: OrderPaymentRequest,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    order = await order_service.process_payment(db, order_id, payload.amount, payload.payment_method)
    return _serialize_order(order)
