from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from core.pricing import Totals
from db.database import get_async_session
from db.enums import PurchaseOrderStatus
from db.purchase_order import PurchaseOrder as PurchaseOrderModel
from db.users import User
from schemas.orders import PricedLineRead
from schemas.purchase_orders import (
    PurchaseOrderCreate,
    PurchaseOrderItemRead,
    PurchaseOrderItemUpdate,
    PurchaseOrderLineCreate,
    PurchaseOrderRead,
    PurchaseOrderStatusUpdate,
    PurchaseOrderTotalsRead,
    PurchaseOrderTotalsRequest,
    ReceiveItemsRequest,
)
from services import purchase_orders as po_service

router = APIRouter()


def _serialize_po(po: PurchaseOrderModel) -> PurchaseOrderRead:
    return PurchaseOrderRead(
        id=po.id,
        po_number=po.po_number,
        supplier_id=po.supplier_id,
        actor_id=po.actor_id,
        status=po.status.value,
        subtotal=po.subtotal,
        tax=po.tax,
        total=po.total,
        expected_delivery_date=po.expected_delivery_date,
        notes=po.notes,
        order_date=po.order_date,
        updated_at=po.updated_at,
        items=[
            PurchaseOrderItemRead(
                id=it.id,
                product_id=it.product_id,
                quantity_ordered=it.quantity_ordered,
                quantity_received=it.quantity_received,
                quantity_outstanding=it.quantity_outstanding,
                unit_cost=it.unit_cost,
                subtotal=it.subtotal,
                tax=it.tax,
            )
            for it in (po.items or [])
        ],
    )


def _serialize_totals(t: Totals) -> PurchaseOrderTotalsRead:
    return PurchaseOrderTotalsRead(
        subtotal=t.subtotal,
        tax=t.tax,
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


@router.post("/", response_model=PurchaseOrderRead, status_code=status.HTTP_201_CREATED)
async def create_purchase_order(
    payload: PurchaseOrderCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    po = await po_service.create_purchase_order(
        db,
        payload.supplier_id,
        [l.model_dump() for l in payload.items],
        actor_id=user.id,
        expected_delivery_date=payload.expected_delivery_date,
        notes=payload.notes,
    )
    return _serialize_po(po)


@router.post("/calculate-totals", response_model=PurchaseOrderTotalsRead)
async def calculate_totals(
    payload: PurchaseOrderTotalsRequest,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    totals = await po_service.calculate_purchase_order_totals(db, [l.model_dump() for l in payload.items])
    return _serialize_totals(totals)


@router.get("/", response_model=List[PurchaseOrderRead])
async def list_purchase_orders(
    status_filter: Optional[PurchaseOrderStatus] = Query(default=None, alias="status"),
    supplier_id: Optional[int] = Query(default=None),
    start_date: Optional[datetime] = Query(default=None),
    end_date: Optional[datetime] = Query(default=None),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    pos = await po_service.list_purchase_orders(
        db,
        status=status_filter.value if status_filter else None,
        supplier_id=supplier_id,
        start_date=start_date,
        end_date=end_date,
    )
    return [_serialize_po(po) for po in pos]


@router.get("/number/{po_number}", response_model=PurchaseOrderRead)
async def get_purchase_order_by_number(
    po_number: str,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    return _serialize_po(await po_service.get_purchase_order_by_number(db, po_number))


@router.get("/{po_id}", response_model=PurchaseOrderRead)
async def get_purchase_order(
    po_id: int,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    return _serialize_po(await po_service.get_purchase_order(db, po_id))


@router.patch("/{po_id}/status", response_model=PurchaseOrderRead)
async def update_purchase_order_status(
    po_id: int,
    payload: PurchaseOrderStatusUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    return _serialize_po(await po_service.update_purchase_order_status(db, po_id, payload.status))


@router.post("/{po_id}/receive", response_model=PurchaseOrderRead)
async def receive_items(
    po_id: int,
    payload: ReceiveItemsRequest,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    po = await po_service.receive_items(db, po_id, [l.model_dump() for l in payload.items], actor_id=user.id)
    return _serialize_po(po)


@router.post("/{po_id}/items", response_model=PurchaseOrderRead, status_code=status.HTTP_201_CREATED)
async def add_item(
    po_id: int,
    payload: PurchaseOrderLineCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    return _serialize_po(await po_service.add_item(db, po_id, payload.model_dump()))


@router.put("/{po_id}/items/{item_id}", response_model=PurchaseOrderRead)
async def update_item(
    po_id: int,
    item_id: int,
    payload: PurchaseOrderItemUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    po = await po_service.update_item(
        db, po_id, item_id, quantity_ordered=payload.quantity_ordered, unit_cost=payload.unit_cost
    )
    return _serialize_po(po)


@router.delete("/{po_id}/items/{item_id}", response_model=PurchaseOrderRead)
async def remove_item(
    po_id: int,
    item_id: int,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    return _serialize_po(await po_service.remove_item(db, po_id, item_id))
