"""
Manual corrections and location-to-location moves, plus read-side queries.

``apply_*`` functions run inside the caller's transaction; the public
functions wrap them in ``atomic`` so each call is one unit of work.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import (
    InsufficientAvailableStockError,
    InsufficientStockError,
    InvalidAdjustmentError,
    InvalidTransferError,
)
from db.catalog import Product
from db.enums import ReferenceType, TransactionKind, TransactionType
from db.inventory.movement import StockTransaction
from db.inventory.stock import StockRecord
from services import catalog, ledger
from services.unit_of_work import atomic

logger = logging.getLogger(__name__)


async def apply_adjustment(
    db: AsyncSession,
    product_id: int,
    location_id: int,
    delta: int,
    reason: Optional[str],
    *,
    actor_id,
    reference_id: Optional[str] = None,
) -> StockTransaction:
    ledger.require_actor(actor_id)
    delta = int(delta)
    if delta == 0:
        raise InvalidAdjustmentError("Adjustment delta must be non-zero", product_id=product_id, location_id=location_id)

    await catalog.get_product(db, product_id)
    await catalog.require_location(db, location_id)

    stock = await ledger.lock_stock(db, product_id, location_id)
    current = int(stock.quantity) if stock else 0
    reserved = int(stock.reserved_quantity) if stock else 0
    new_quantity = current + delta
    if new_quantity < 0:
        raise InvalidAdjustmentError(
            f"Adjustment would result in negative stock for product {product_id} at location {location_id}. "
            f"Current: {current}, adjustment: {delta}",
            product_id=product_id,
            location_id=location_id,
            current=current,
            delta=delta,
        )
    if new_quantity < reserved:
        raise InvalidAdjustmentError(
            f"Adjustment would leave less stock than is reserved for product {product_id} at location "
            f"{location_id}. Reserved: {reserved}, resulting quantity: {new_quantity}",
            product_id=product_id,
            location_id=location_id,
            reserved=reserved,
            delta=delta,
        )

    if stock is None:
        stock = await ledger.lock_or_create_stock(db, product_id, location_id)
    stock.quantity = new_quantity
    ledger.check_invariants(stock)

    txn = ledger.record_transaction(
        db,
        transaction_type=TransactionType.IN if delta >= 0 else TransactionType.OUT,
        kind=TransactionKind.ADJUSTMENT,
        product_id=product_id,
        quantity=abs(delta),
        from_location_id=location_id if delta < 0 else None,
        to_location_id=location_id if delta >= 0 else None,
        reference_id=reference_id,
        reference_type=ReferenceType.ADJUSTMENT.value,
        actor_id=actor_id,
        notes=reason,
    )
    await db.flush()
    logger.info(
        "Adjusted product %s at location %s by %+d (now %d): %s",
        product_id, location_id, delta, new_quantity, reason or "-",
    )
    return txn


async def apply_transfer(
    db: AsyncSession,
    product_id: int,
    from_location_id: int,
    to_location_id: int,
    quantity: int,
    *,
    actor_id,
    notes: Optional[str] = None,
    reference_id: Optional[str] = None,
) -> StockTransaction:
    ledger.require_actor(actor_id)
    quantity = int(quantity)
    if from_location_id == to_location_id:
        raise InvalidTransferError("Source and destination locations cannot be the same", location_id=from_location_id)
    if quantity <= 0:
        raise InvalidTransferError("Transfer quantity must be greater than zero", quantity=quantity)

    await catalog.get_product(db, product_id)
    await catalog.require_location(db, from_location_id)
    await catalog.require_location(db, to_location_id)

    locked = await ledger.lock_stocks(db, [(product_id, from_location_id), (product_id, to_location_id)])
    source = locked[(product_id, from_location_id)]
    on_hand = int(source.quantity) if source else 0
    if on_hand < quantity:
        raise InsufficientStockError(
            f"Insufficient stock for product {product_id} at location {from_location_id}. "
            f"On hand: {on_hand}, requested: {quantity}",
            product_id=product_id,
            location_id=from_location_id,
            requested=quantity,
            available=on_hand,
        )
    if source.available_quantity < quantity:
        raise InsufficientAvailableStockError(
            f"Cannot move reserved stock of product {product_id} out of location {from_location_id}. "
            f"Available: {source.available_quantity}, requested: {quantity}",
            product_id=product_id,
            location_id=from_location_id,
            requested=quantity,
            available=source.available_quantity,
        )

    destination = locked[(product_id, to_location_id)]
    if destination is None:
        destination = await ledger.lock_or_create_stock(db, product_id, to_location_id)

    source.quantity = on_hand - quantity
    destination.quantity = int(destination.quantity) + quantity
    ledger.check_invariants(source)
    ledger.check_invariants(destination)

    txn = ledger.record_transaction(
        db,
        transaction_type=TransactionType.TRANSFER,
        kind=TransactionKind.TRANSFER,
        product_id=product_id,
        quantity=quantity,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        reference_id=reference_id,
        reference_type=ReferenceType.TRANSFER.value,
        actor_id=actor_id,
        notes=notes,
    )
    await db.flush()
    logger.info(
        "Transferred %d of product %s from location %s to %s",
        quantity, product_id, from_location_id, to_location_id,
    )
    return txn


async def adjust_quantity(db: AsyncSession, product_id: int, location_id: int, delta: int, reason: Optional[str],
                          *, actor_id, reference_id: Optional[str] = None) -> StockTransaction:
    return await atomic(
        db, apply_adjustment, product_id, location_id, delta, reason,
        actor_id=actor_id, reference_id=reference_id,
    )


async def transfer_stock(db: AsyncSession, product_id: int, from_location_id: int, to_location_id: int,
                         quantity: int, *, actor_id, notes: Optional[str] = None) -> StockTransaction:
    return await atomic(
        db, apply_transfer, product_id, from_location_id, to_location_id, quantity,
        actor_id=actor_id, notes=notes,
    )


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------


@dataclass
class StockLevel:
    product_id: int
    location_id: int
    quantity: int = 0
    reserved_quantity: int = 0

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.reserved_quantity


async def get_stock_level(db: AsyncSession, product_id: int, location_id: int) -> StockLevel:
    stock = await ledger.get_stock(db, product_id, location_id)
    if stock is None:
        return StockLevel(product_id=product_id, location_id=location_id)
    return StockLevel(
        product_id=product_id,
        location_id=location_id,
        quantity=int(stock.quantity),
        reserved_quantity=int(stock.reserved_quantity),
    )


async def list_stock(db: AsyncSession, product_id: Optional[int] = None,
                     location_id: Optional[int] = None) -> List[StockRecord]:
    stmt = select(StockRecord).execution_options(populate_existing=True)
    if product_id is not None:
        stmt = stmt.where(StockRecord.product_id == product_id)
    if location_id is not None:
        stmt = stmt.where(StockRecord.location_id == location_id)
    res = await db.execute(stmt.order_by(StockRecord.product_id.asc(), StockRecord.location_id.asc()))
    return list(res.scalars().all())


async def list_transactions(
    db: AsyncSession,
    product_id: Optional[int] = None,
    location_id: Optional[int] = None,
    reference_type: Optional[str] = None,
    reference_id: Optional[str] = None,
    limit: int = 200,
) -> List[StockTransaction]:
    stmt = select(StockTransaction)
    if product_id is not None:
        stmt = stmt.where(StockTransaction.product_id == product_id)
    if location_id is not None:
        stmt = stmt.where(
            (StockTransaction.from_location_id == location_id) | (StockTransaction.to_location_id == location_id)
        )
    if reference_type:
        stmt = stmt.where(StockTransaction.reference_type == reference_type)
    if reference_id:
        stmt = stmt.where(StockTransaction.reference_id == reference_id)
    res = await db.execute(stmt.order_by(StockTransaction.id.asc()).limit(limit))
    return list(res.scalars().all())


@dataclass
class LowStockItem:
    product: Product
    total_quantity: int
    threshold: int
    records: List[StockRecord] = field(default_factory=list)

    @property
    def deficit(self) -> int:
        return self.threshold - self.total_quantity


async def low_stock(db: AsyncSession, threshold: Optional[int] = None,
                    location_id: Optional[int] = None) -> List[LowStockItem]:
    """Active products whose on-hand total is at or below the threshold (or their reorder point)."""
    res = await db.execute(select(Product).where(Product.is_active.is_(True)).order_by(Product.id.asc()))
    products = res.scalars().all()

    records = await list_stock(db, location_id=location_id)
    by_product: dict[int, List[StockRecord]] = {}
    for r in records:
        by_product.setdefault(r.product_id, []).append(r)

    out: List[LowStockItem] = []
    for p in products:
        rows = by_product.get(p.id, [])
        total = sum(int(r.quantity) for r in rows)
        limit = threshold if threshold is not None else int(p.reorder_point)
        if total <= limit:
            out.append(LowStockItem(product=p, total_quantity=total, threshold=limit, records=rows))
    return out
