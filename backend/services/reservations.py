"""
Reserve / release stock without moving it, and turn reservations into deductions.

Reservation, release and deduction are separate ledger rows (RESERVE,
UNRESERVE, DEDUCT) carrying the reference they belong to, so the amount still
held for one order can be rebuilt from the log.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import (
    InsufficientAvailableStockError,
    InvalidRequestError,
    NotFoundError,
    OverUnreserveError,
)
from db.enums import TransactionKind, TransactionType
from db.inventory.movement import StockTransaction
from db.inventory.stock import StockRecord
from services import catalog, ledger
from services.unit_of_work import atomic

logger = logging.getLogger(__name__)


def _positive(quantity: int, what: str) -> int:
    quantity = int(quantity)
    if quantity <= 0:
        raise InvalidRequestError(f"{what} quantity must be greater than zero", quantity=quantity)
    return quantity


def _reserve_locked(
    db: AsyncSession,
    stock: StockRecord,
    quantity: int,
    reference_id: str,
    reference_type: str,
    actor_id,
    notes: Optional[str] = None,
) -> StockTransaction:
    available = stock.available_quantity
    if available < quantity:
        raise InsufficientAvailableStockError(
            f"Insufficient available stock for product {stock.product_id} at location {stock.location_id}. "
            f"Available: {available}, requested: {quantity}",
            product_id=stock.product_id,
            location_id=stock.location_id,
            requested=quantity,
            available=available,
        )
    stock.reserved_quantity = int(stock.reserved_quantity) + quantity
    ledger.check_invariants(stock)
    return ledger.record_transaction(
        db,
        transaction_type=TransactionType.OUT,
        kind=TransactionKind.RESERVE,
        product_id=stock.product_id,
        quantity=quantity,
        from_location_id=stock.location_id,
        reference_id=reference_id,
        reference_type=reference_type,
        actor_id=actor_id,
        notes=notes or f"Reserved for {reference_type} {reference_id}",
    )


def _release_locked(
    db: AsyncSession,
    stock: StockRecord,
    quantity: int,
    reference_id: str,
    reference_type: str,
    actor_id,
    notes: Optional[str] = None,
) -> StockTransaction:
    reserved = int(stock.reserved_quantity)
    if reserved < quantity:
        raise OverUnreserveError(
            f"Attempting to unreserve more than is reserved for product {stock.product_id} at location "
            f"{stock.location_id}. Reserved: {reserved}, requested: {quantity}",
            product_id=stock.product_id,
            location_id=stock.location_id,
            reserved=reserved,
            requested=quantity,
        )
    stock.reserved_quantity = reserved - quantity
    ledger.check_invariants(stock)
    return ledger.record_transaction(
        db,
        transaction_type=TransactionType.IN,
        kind=TransactionKind.UNRESERVE,
        product_id=stock.product_id,
        quantity=quantity,
        to_location_id=stock.location_id,
        reference_id=reference_id,
        reference_type=reference_type,
        actor_id=actor_id,
        notes=notes or f"Unreserved from {reference_type} {reference_id}",
    )


def _deduct_locked(
    db: AsyncSession,
    stock: StockRecord,
    quantity: int,
    reference_id: str,
    reference_type: str,
    actor_id,
    notes: Optional[str] = None,
) -> StockTransaction:
    reserved = int(stock.reserved_quantity)
    if reserved < quantity:
        raise OverUnreserveError(
            f"Cannot deduct {quantity} of product {stock.product_id} at location {stock.location_id}: "
            f"only {reserved} reserved",
            product_id=stock.product_id,
            location_id=stock.location_id,
            reserved=reserved,
            requested=quantity,
        )
    stock.quantity = int(stock.quantity) - quantity
    stock.reserved_quantity = reserved - quantity
    ledger.check_invariants(stock)
    return ledger.record_transaction(
        db,
        transaction_type=TransactionType.OUT,
        kind=TransactionKind.DEDUCT,
        product_id=stock.product_id,
        quantity=quantity,
        from_location_id=stock.location_id,
        reference_id=reference_id,
        reference_type=reference_type,
        actor_id=actor_id,
        notes=notes,
    )


async def _lock_existing(db: AsyncSession, product_id: int, location_id: int) -> StockRecord:
    stock = await ledger.lock_stock(db, product_id, location_id)
    if stock is None:
        raise NotFoundError("Stock record", f"product={product_id} location={location_id}")
    return stock


async def apply_reservation(
    db: AsyncSession,
    product_id: int,
    location_id: int,
    quantity: int,
    reference_id: str,
    reference_type: str,
    *,
    actor_id,
    notes: Optional[str] = None,
) -> StockTransaction:
    ledger.require_actor(actor_id)
    quantity = _positive(quantity, "Reservation")
    await catalog.get_product(db, product_id)
    await catalog.require_location(db, location_id)

    stock = await _lock_existing(db, product_id, location_id)
    txn = _reserve_locked(db, stock, quantity, reference_id, reference_type, actor_id, notes)
    await db.flush()
    logger.info(
        "Reserved %d of product %s at location %s for %s %s",
        quantity, product_id, location_id, reference_type, reference_id,
    )
    return txn


async def apply_release(
    db: AsyncSession,
    product_id: int,
    location_id: int,
    quantity: int,
    reference_id: str,
    reference_type: str,
    *,
    actor_id,
    notes: Optional[str] = None,
) -> StockTransaction:
    ledger.require_actor(actor_id)
    quantity = _positive(quantity, "Unreserve")

    stock = await _lock_existing(db, product_id, location_id)
    # a reference may only give back what it holds here
    held = (await ledger.outstanding_reservations(db, product_id, reference_type, reference_id)).get(location_id, 0)
    if held < quantity:
        raise OverUnreserveError(
            f"Cannot unreserve {quantity} of product {product_id} at location {location_id} "
            f"for {reference_type} {reference_id}: only {held} reserved",
            product_id=product_id,
            location_id=location_id,
            requested=quantity,
            reserved=held,
        )
    txn = _release_locked(db, stock, quantity, reference_id, reference_type, actor_id, notes)
    await db.flush()
    logger.info(
        "Unreserved %d of product %s at location %s for %s %s",
        quantity, product_id, location_id, reference_type, reference_id,
    )
    return txn


async def reserve_stock(db: AsyncSession, product_id: int, location_id: int, quantity: int,
                        reference_id: str, reference_type: str, *, actor_id) -> StockTransaction:
    return await atomic(
        db, apply_reservation, product_id, location_id, quantity, reference_id, reference_type,
        actor_id=actor_id,
    )


async def unreserve_stock(db: AsyncSession, product_id: int, location_id: int, quantity: int,
                          reference_id: str, reference_type: str, *, actor_id) -> StockTransaction:
    return await atomic(
        db, apply_release, product_id, location_id, quantity, reference_id, reference_type,
        actor_id=actor_id,
    )


# ---------------------------------------------------------------------------
# Multi-location allocation (used by order fulfilment)
# ---------------------------------------------------------------------------


@dataclass
class Allocation:
    location_id: int
    quantity: int
    transaction: StockTransaction


def _allocation_order(stocks: List[StockRecord]) -> List[StockRecord]:
    # highest available first, location id breaks ties
    return sorted(stocks, key=lambda s: (-s.available_quantity, s.location_id))


async def allocate(
    db: AsyncSession,
    stocks: List[StockRecord],
    quantity: int,
    reference_id: str,
    reference_type: str,
    *,
    actor_id,
    notes: Optional[str] = None,
) -> List[Allocation]:
    """
    Reserve ``quantity`` across already-locked rows of one product.

    Raises ``InsufficientAvailableStockError`` if the rows cannot cover it;
    the caller's transaction is then rolled back as a whole.
    """
    remaining = int(quantity)
    out: List[Allocation] = []
    for stock in _allocation_order(stocks):
        if remaining <= 0:
            break
        take = min(remaining, stock.available_quantity)
        if take <= 0:
            continue
        txn = _reserve_locked(db, stock, take, reference_id, reference_type, actor_id, notes)
        out.append(Allocation(location_id=stock.location_id, quantity=take, transaction=txn))
        remaining -= take

    if remaining > 0:
        product_id = stocks[0].product_id if stocks else None
        available = sum(max(s.available_quantity, 0) for s in stocks)
        raise InsufficientAvailableStockError(
            f"Could not reserve {quantity} of product {product_id}; {quantity - remaining} allocated",
            product_id=product_id,
            requested=int(quantity),
            available=available,
        )
    return out


async def deduct_outstanding(
    db: AsyncSession,
    product_id: int,
    quantity: int,
    reference_id: str,
    reference_type: str,
    *,
    actor_id,
    notes: Optional[str] = None,
    held: Optional[dict] = None,
) -> List[StockTransaction]:
    """
    Convert up to ``quantity`` of what this reference still holds into a real
    deduction, location by location. ``held`` (location -> quantity) is
    consumed in place so several lines of the same product share it.
    """
    if held is None:
        held = await ledger.outstanding_reservations(db, product_id, reference_type, reference_id)
    return await _consume_held(db, product_id, quantity, held, reference_id, reference_type,
                               actor_id, notes, _deduct_locked)


async def release_outstanding(
    db: AsyncSession,
    product_id: int,
    quantity: int,
    reference_id: str,
    reference_type: str,
    *,
    actor_id,
    notes: Optional[str] = None,
    held: Optional[dict] = None,
) -> List[StockTransaction]:
    """Release up to ``quantity`` of what this reference still holds."""
    if held is None:
        held = await ledger.outstanding_reservations(db, product_id, reference_type, reference_id)
    return await _consume_held(db, product_id, quantity, held, reference_id, reference_type,
                               actor_id, notes, _release_locked)


async def _consume_held(db, product_id, quantity, held, reference_id, reference_type, actor_id, notes, step):
    ledger.require_actor(actor_id)
    remaining = int(quantity)
    out: List[StockTransaction] = []
    for location_id in sorted(held):
        if remaining <= 0:
            break
        take = min(remaining, held[location_id])
        if take <= 0:
            continue
        stock = await _lock_existing(db, product_id, location_id)
        out.append(step(db, stock, take, reference_id, reference_type, actor_id, notes))
        held[location_id] -= take
        remaining -= take
    return out
