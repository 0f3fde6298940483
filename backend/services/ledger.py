"""
Stock ledger: per (product, location) counters plus the append-only transaction log.

Every write path goes through the helpers here:

- rows are read with ``SELECT ... FOR UPDATE`` before they are changed, and
  multi-row callers lock in ascending (product_id, location_id) order;
- a missing row reads as quantity 0 / reserved 0 and is only materialised on
  the first write;
- each counter change is paired with exactly one ``StockTransaction`` in the
  same flush.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db.catalog import Location
from db.enums import TransactionKind, TransactionType
from db.inventory.movement import StockTransaction
from db.inventory.stock import StockRecord
from services.unit_of_work import StockRowConflict, is_unique_violation

logger = logging.getLogger(__name__)

StockKey = Tuple[int, int]


class LedgerInvariantError(RuntimeError):
    """A stock row was about to be written in a state the ledger never allows."""


def require_actor(actor_id) -> None:
    if actor_id is None:
        raise ValueError("actor_id is required for every stock mutation")


def check_invariants(stock: StockRecord) -> None:
    quantity = int(stock.quantity)
    reserved = int(stock.reserved_quantity)
    if quantity < 0 or reserved < 0 or reserved > quantity:
        raise LedgerInvariantError(
            f"stock ({stock.product_id}, {stock.location_id}) would become "
            f"quantity={quantity} reserved={reserved}"
        )


def _stock_query(product_id: int, location_id: int):
    return select(StockRecord).where(
        StockRecord.product_id == product_id,
        StockRecord.location_id == location_id,
    )


async def get_stock(db: AsyncSession, product_id: int, location_id: int) -> Optional[StockRecord]:
    """Current row, or None when this product was never stocked at this location."""
    res = await db.execute(
        _stock_query(product_id, location_id).execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def lock_stock(db: AsyncSession, product_id: int, location_id: int) -> Optional[StockRecord]:
    res = await db.execute(
        _stock_query(product_id, location_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def lock_or_create_stock(db: AsyncSession, product_id: int, location_id: int) -> StockRecord:
    stock = await lock_stock(db, product_id, location_id)
    if stock is not None:
        return stock

    stock = StockRecord(product_id=product_id, location_id=location_id, quantity=0, reserved_quantity=0)
    db.add(stock)
    try:
        await db.flush([stock])
    except IntegrityError as e:
        # Another transaction created the row first; the unit of work re-runs us
        if is_unique_violation(e):
            raise StockRowConflict(product_id, location_id) from e
        raise
    logger.debug("Created stock row for product %s at location %s", product_id, location_id)
    return stock


async def lock_stocks(db: AsyncSession, keys: Iterable[StockKey]) -> Dict[StockKey, Optional[StockRecord]]:
    """Lock several rows one at a time in key order (no deadlock between writers)."""
    out: Dict[StockKey, Optional[StockRecord]] = {}
    for product_id, location_id in sorted(set(keys)):
        out[(product_id, location_id)] = await lock_stock(db, product_id, location_id)
    return out


async def lock_product_stocks(db: AsyncSession, product_id: int) -> List[StockRecord]:
    """Lock the product's rows at active locations, in location order."""
    res = await db.execute(
        select(StockRecord)
        .join(Location, Location.id == StockRecord.location_id)
        .where(StockRecord.product_id == product_id, Location.is_active.is_(True))
        .order_by(StockRecord.location_id.asc())
        .with_for_update(of=StockRecord)
        .execution_options(populate_existing=True)
    )
    return list(res.scalars().all())


def record_transaction(
    db: AsyncSession,
    *,
    transaction_type: TransactionType,
    kind: TransactionKind,
    product_id: int,
    quantity: int,
    actor_id,
    from_location_id: Optional[int] = None,
    to_location_id: Optional[int] = None,
    reference_id: Optional[str] = None,
    reference_type: Optional[str] = None,
    notes: Optional[str] = None,
) -> StockTransaction:
    require_actor(actor_id)
    if quantity <= 0:
        raise LedgerInvariantError(f"transaction quantity must be positive, got {quantity}")
    txn = StockTransaction(
        transaction_type=transaction_type,
        kind=kind,
        product_id=product_id,
        quantity=int(quantity),
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        reference_id=reference_id,
        reference_type=reference_type,
        actor_id=actor_id,
        notes=notes,
    )
    db.add(txn)
    return txn


async def outstanding_reservations(
    db: AsyncSession,
    product_id: int,
    reference_type: str,
    reference_id: str,
) -> Dict[int, int]:
    """
    Quantity still held per location for one reference.

    RESERVE rows add, UNRESERVE and DEDUCT rows subtract. Only locations with
    a positive balance are returned, in location order.
    """
    location_col = func.coalesce(StockTransaction.from_location_id, StockTransaction.to_location_id)
    signed = case(
        (StockTransaction.kind == TransactionKind.RESERVE, StockTransaction.quantity),
        else_=-StockTransaction.quantity,
    )
    res = await db.execute(
        select(location_col.label("location_id"), func.sum(signed).label("held"))
        .where(
            StockTransaction.product_id == product_id,
            StockTransaction.reference_type == reference_type,
            StockTransaction.reference_id == reference_id,
            StockTransaction.kind.in_(
                [TransactionKind.RESERVE, TransactionKind.UNRESERVE, TransactionKind.DEDUCT]
            ),
        )
        .group_by(location_col)
        .order_by(location_col.asc())
    )
    return {int(row.location_id): int(row.held) for row in res.all() if int(row.held or 0) > 0}
