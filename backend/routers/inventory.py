from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from db.database import get_async_session
from db.inventory.movement import StockTransaction
from db.users import User
from schemas.inventory import (
    LowStockRead,
    StockAdjustRequest,
    StockRead,
    StockReservationRequest,
    StockTransactionRead,
    StockTransferRequest,
)
from services import inventory as inventory_service
from services import reservations as reservation_service

router = APIRouter()


def _serialize_stock(s) -> StockRead:
    return StockRead(
        product_id=s.product_id,
        location_id=s.location_id,
        quantity=int(s.quantity),
        reserved_quantity=int(s.reserved_quantity),
        available_quantity=int(s.available_quantity),
        updated_at=getattr(s, "updated_at", None),
    )


def _serialize_transaction(t: StockTransaction) -> StockTransactionRead:
    return StockTransactionRead(
        id=t.id,
        transaction_type=t.transaction_type.value,
        kind=t.kind.value,
        product_id=t.product_id,
        quantity=t.quantity,
        from_location_id=t.from_location_id,
        to_location_id=t.to_location_id,
        reference_id=t.reference_id,
        reference_type=t.reference_type,
        actor_id=t.actor_id,
        notes=t.notes,
        created_at=t.created_at,
    )


@router.get("/stock", response_model=List[StockRead])
async def list_stock(
    product_id: Optional[int] = Query(default=None),
    location_id: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    rows = await inventory_service.list_stock(db, product_id=product_id, location_id=location_id)
    return [_serialize_stock(r) for r in rows]


@router.get("/stock/{product_id}/{location_id}", response_model=StockRead)
async def get_stock_level(
    product_id: int,
    location_id: int,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    level = await inventory_service.get_stock_level(db, product_id, location_id)
    return _serialize_stock(level)


@router.get("/transactions", response_model=List[StockTransactionRead])
async def list_transactions(
    product_id: Optional[int] = Query(default=None),
    location_id: Optional[int] = Query(default=None),
    reference_type: Optional[str] = Query(default=None),
    reference_id: Optional[str] = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    rows = await inventory_service.list_transactions(
        db,
        product_id=product_id,
        location_id=location_id,
        reference_type=reference_type,
        reference_id=reference_id,
        limit=limit,
    )
    return [_serialize_transaction(t) for t in rows]


@router.get("/low-stock", response_model=List[LowStockRead])
async def low_stock(
    threshold: Optional[int] = Query(default=None, ge=0),
    location_id: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    items = await inventory_service.low_stock(db, threshold=threshold, location_id=location_id)
    return [
        LowStockRead(
            product_id=i.product.id,
            sku=i.product.sku,
            name=i.product.name,
            total_quantity=i.total_quantity,
            threshold=i.threshold,
            deficit=i.deficit,
            reorder_quantity=int(i.product.reorder_quantity),
            stock=[_serialize_stock(r) for r in i.records],
        )
        for i in items
    ]


@router.post("/adjust", response_model=StockTransactionRead, status_code=status.HTTP_201_CREATED)
async def adjust_stock(
    payload: StockAdjustRequest,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    txn = await inventory_service.adjust_quantity(
        db, payload.product_id, payload.location_id, payload.quantity, payload.reason, actor_id=user.id
    )
    return _serialize_transaction(txn)


@router.post("/transfer", response_model=StockTransactionRead, status_code=status.HTTP_201_CREATED)
async def transfer_stock(
    payload: StockTransferRequest,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    txn = await inventory_service.transfer_stock(
        db,
        payload.product_id,
        payload.from_location_id,
        payload.to_location_id,
        payload.quantity,
        actor_id=user.id,
        notes=payload.notes,
    )
    return _serialize_transaction(txn)


@router.post("/reserve", response_model=StockTransactionRead, status_code=status.HTTP_201_CREATED)
async def reserve_stock(
    payload: StockReservationRequest,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    txn = await reservation_service.reserve_stock(
        db,
        payload.product_id,
        payload.location_id,
        payload.quantity,
        payload.reference_id,
        payload.reference_type,
        actor_id=user.id,
    )
    return _serialize_transaction(txn)


@router.post("/unreserve", response_model=StockTransactionRead, status_code=status.HTTP_201_CREATED)
async def unreserve_stock(
    payload: StockReservationRequest,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    txn = await reservation_service.unreserve_stock(
        db,
        payload.product_id,
        payload.location_id,
        payload.quantity,
        payload.reference_id,
        payload.reference_type,
        actor_id=user.id,
    )
    return _serialize_transaction(txn)
