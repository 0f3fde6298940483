"""
Purchase orders: drafting, manual status changes and receiving goods into stock.

Receiving is the only path that increments ``quantity_received`` and the only
way a purchase order reaches RECEIVED.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import (
    InvalidRequestError,
    InvalidStateError,
    InvalidStatusTransitionError,
    NotFoundError,
    OverReceiptError,
)
from core.generators import generate_purchase_order_number
from core.pricing import Totals
from db.catalog import Product
from db.enums import PurchaseOrderStatus, ReferenceType, TransactionKind, TransactionType
from db.purchase_order import PurchaseOrder, PurchaseOrderItem
from services import catalog, ledger
from services.unit_of_work import atomic, flush_new_document

logger = logging.getLogger(__name__)

# RECEIVED is set by receive_items only
MANUAL_TRANSITIONS: Dict[PurchaseOrderStatus, frozenset] = {
    PurchaseOrderStatus.DRAFT: frozenset({PurchaseOrderStatus.SUBMITTED, PurchaseOrderStatus.CANCELED}),
    PurchaseOrderStatus.SUBMITTED: frozenset({PurchaseOrderStatus.CANCELED}),
    PurchaseOrderStatus.RECEIVED: frozenset(),
    PurchaseOrderStatus.CANCELED: frozenset(),
}


@dataclass
class PurchaseLine:
    product_id: int
    quantity_ordered: int
    unit_cost: Optional[int] = None


@dataclass
class ReceiptLine:
    item_id: int
    quantity_received: int
    location_id: int


def _get(line, name, default=None):
    if isinstance(line, dict):
        return line.get(name, default)
    return getattr(line, name, default)


def _normalize_lines(lines: Iterable) -> List[PurchaseLine]:
    out: List[PurchaseLine] = []
    for line in lines:
        product_id = _get(line, "product_id")
        quantity = int(_get(line, "quantity_ordered") or 0)
        unit_cost = _get(line, "unit_cost")
        if product_id is None:
            raise InvalidRequestError("Every purchase order line needs a product_id")
        if quantity <= 0:
            raise InvalidRequestError(
                f"Quantity ordered for product {product_id} must be greater than zero",
                product_id=product_id,
                quantity=quantity,
            )
        if unit_cost is not None and int(unit_cost) < 0:
            raise InvalidRequestError(f"Unit cost for product {product_id} cannot be negative", product_id=product_id)
        out.append(PurchaseLine(int(product_id), quantity, None if unit_cost is None else int(unit_cost)))
    if not out:
        raise InvalidRequestError("A purchase order needs at least one line")
    return out


def _price_line(totals: Totals, line: PurchaseLine, product: Product):
    unit_cost = line.unit_cost if line.unit_cost is not None else int(product.cost)
    return totals.add_line(line.product_id, line.quantity_ordered, unit_cost, product.tax_rate)


async def calculate_purchase_order_totals(db: AsyncSession, lines: Iterable) -> Totals:
    lines = _normalize_lines(lines)
    products = await catalog.require_active_products(db, (l.product_id for l in lines))
    totals = Totals()
    for line in lines:
        _price_line(totals, line, products[line.product_id])
    return totals


async def _recompute_totals(db: AsyncSession, po: PurchaseOrder) -> None:
    res = await db.execute(select(Product).where(Product.id.in_({i.product_id for i in po.items})))
    products = {p.id: p for p in res.scalars().all()}
    totals = Totals()
    for item in po.items:
        priced = totals.add_line(item.product_id, item.quantity_ordered, item.unit_cost,
                                 products[item.product_id].tax_rate)
        item.subtotal = priced.subtotal
        item.tax = priced.tax
    po.subtotal = totals.subtotal
    po.tax = totals.tax
    po.total = totals.total


async def _create_purchase_order(
    db: AsyncSession,
    supplier_id: int,
    lines: List[PurchaseLine],
    *,
    actor_id,
    expected_delivery_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> PurchaseOrder:
    ledger.require_actor(actor_id)
    await catalog.require_active_supplier(db, supplier_id)
    products = await catalog.require_active_products(db, (l.product_id for l in lines))

    totals = Totals()
    po = PurchaseOrder(
        po_number=generate_purchase_order_number(),
        supplier_id=supplier_id,
        actor_id=actor_id,
        status=PurchaseOrderStatus.DRAFT,
        expected_delivery_date=expected_delivery_date,
        notes=notes,
    )
    for line in lines:
        priced = _price_line(totals, line, products[line.product_id])
        po.items.append(
            PurchaseOrderItem(
                product_id=line.product_id,
                quantity_ordered=line.quantity_ordered,
                quantity_received=0,
                unit_cost=priced.unit_price,
                subtotal=priced.subtotal,
                tax=priced.tax,
            )
        )
    po.subtotal = totals.subtotal
    po.tax = totals.tax
    po.total = totals.total
    db.add(po)
    await flush_new_document(db, po.po_number)
    logger.info("Created purchase order %s for supplier %s (total %d)", po.po_number, supplier_id, po.total)
    return po


async def create_purchase_order(
    db: AsyncSession,
    supplier_id: int,
    lines: Iterable,
    *,
    actor_id,
    expected_delivery_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> PurchaseOrder:
    lines = _normalize_lines(lines)
    po = await atomic(
        db, _create_purchase_order, supplier_id, lines,
        actor_id=actor_id, expected_delivery_date=expected_delivery_date, notes=notes,
    )
    return await get_purchase_order(db, po.id)


async def _lock_purchase_order(db: AsyncSession, po_id: int) -> PurchaseOrder:
    res = await db.execute(
        select(PurchaseOrder)
        .where(PurchaseOrder.id == po_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    po = res.scalar_one_or_none()
    if po is None:
        raise NotFoundError("Purchase order", po_id)
    return po


async def _update_status(db: AsyncSession, po_id: int, status: PurchaseOrderStatus) -> PurchaseOrder:
    po = await _lock_purchase_order(db, po_id)
    current = PurchaseOrderStatus(po.status)
    if status not in MANUAL_TRANSITIONS[current]:
        raise InvalidStatusTransitionError("purchase order", current.value, status.value)
    po.status = status
    await db.flush()
    logger.info("Purchase order %s: %s -> %s", po.po_number, current.value, status.value)
    return po


async def update_purchase_order_status(db: AsyncSession, po_id: int, status) -> PurchaseOrder:
    try:
        status = PurchaseOrderStatus(status)
    except ValueError:
        raise InvalidRequestError(f"Unknown purchase order status {status!r}")
    po = await atomic(db, _update_status, po_id, status)
    return await get_purchase_order(db, po.id)


# ---------------------------------------------------------------------------
# Receiving
# ---------------------------------------------------------------------------


def _normalize_receipts(items: Iterable) -> List[ReceiptLine]:
    out: List[ReceiptLine] = []
    for line in items:
        item_id = _get(line, "item_id")
        location_id = _get(line, "location_id")
        quantity = int(_get(line, "quantity_received") or 0)
        if item_id is None or location_id is None:
            raise InvalidRequestError("Every receipt line needs an item_id and a location_id")
        if quantity <= 0:
            raise InvalidRequestError(
                f"Received quantity for item {item_id} must be greater than zero",
                item_id=item_id,
                quantity=quantity,
            )
        out.append(ReceiptLine(int(item_id), quantity, int(location_id)))
    if not out:
        raise InvalidRequestError("Nothing to receive")
    return out


async def _receive_items(db: AsyncSession, po_id: int, receipts: List[ReceiptLine], *, actor_id) -> PurchaseOrder:
    ledger.require_actor(actor_id)
    po = await _lock_purchase_order(db, po_id)
    if po.status != PurchaseOrderStatus.SUBMITTED:
        raise InvalidStateError(
            f"Purchase order {po.po_number} must be SUBMITTED to receive items (is {po.status.value})",
            purchase_order_id=po.id,
        )

    items = {i.id: i for i in po.items}
    for receipt in receipts:
        if receipt.item_id not in items:
            raise NotFoundError("Purchase order item", receipt.item_id)
        await catalog.require_location(db, receipt.location_id)

    # repeated lines for one item count together
    requested: Dict[int, int] = {}
    for receipt in receipts:
        requested[receipt.item_id] = requested.get(receipt.item_id, 0) + receipt.quantity_received
    for item_id, quantity in requested.items():
        item = items[item_id]
        if int(item.quantity_received) + quantity > int(item.quantity_ordered):
            raise OverReceiptError(
                f"Cannot receive {quantity} of product {item.product_id} on {po.po_number}: "
                f"ordered {item.quantity_ordered}, already received {item.quantity_received}",
                item_id=item.id,
                ordered=item.quantity_ordered,
                received=item.quantity_received,
                requested=quantity,
            )

    locked = await ledger.lock_stocks(db, [(items[r.item_id].product_id, r.location_id) for r in receipts])
    for receipt in receipts:
        item = items[receipt.item_id]
        key = (item.product_id, receipt.location_id)
        stock = locked.get(key)
        if stock is None:
            stock = await ledger.lock_or_create_stock(db, *key)
            locked[key] = stock
        stock.quantity = int(stock.quantity) + receipt.quantity_received
        ledger.check_invariants(stock)
        item.quantity_received = int(item.quantity_received) + receipt.quantity_received
        ledger.record_transaction(
            db,
            transaction_type=TransactionType.IN,
            kind=TransactionKind.RECEIPT,
            product_id=item.product_id,
            quantity=receipt.quantity_received,
            to_location_id=receipt.location_id,
            reference_id=str(po.id),
            reference_type=ReferenceType.PURCHASE_ORDER.value,
            actor_id=actor_id,
            notes=f"Received on {po.po_number}",
        )

    if po.is_fully_received:
        po.status = PurchaseOrderStatus.RECEIVED
    await db.flush()
    logger.info(
        "Received %d line(s) on %s; status %s",
        len(receipts), po.po_number, po.status.value,
    )
    return po


async def receive_items(db: AsyncSession, po_id: int, items: Iterable, *, actor_id) -> PurchaseOrder:
    receipts = _normalize_receipts(items)
    po = await atomic(db, _receive_items, po_id, receipts, actor_id=actor_id)
    return await get_purchase_order(db, po.id)


# ---------------------------------------------------------------------------
# Line editing (DRAFT only)
# ---------------------------------------------------------------------------


def _require_draft(po: PurchaseOrder) -> None:
    if po.status != PurchaseOrderStatus.DRAFT:
        raise InvalidStateError(
            f"Items of purchase order {po.po_number} can only change while DRAFT (is {po.status.value})",
            purchase_order_id=po.id,
        )


def _find_item(po: PurchaseOrder, item_id: int) -> PurchaseOrderItem:
    for item in po.items:
        if item.id == item_id:
            return item
    raise NotFoundError("Purchase order item", item_id)


async def _add_item(db: AsyncSession, po_id: int, line: PurchaseLine) -> PurchaseOrder:
    po = await _lock_purchase_order(db, po_id)
    _require_draft(po)
    product = await catalog.require_active_product(db, line.product_id)
    po.items.append(
        PurchaseOrderItem(
            product_id=line.product_id,
            quantity_ordered=line.quantity_ordered,
            quantity_received=0,
            unit_cost=line.unit_cost if line.unit_cost is not None else int(product.cost),
            subtotal=0,
            tax=0,
        )
    )
    await _recompute_totals(db, po)
    await db.flush()
    return po


async def add_item(db: AsyncSession, po_id: int, line) -> PurchaseOrder:
    (line,) = _normalize_lines([line])
    po = await atomic(db, _add_item, po_id, line)
    return await get_purchase_order(db, po.id)


async def _update_item(db: AsyncSession, po_id: int, item_id: int, quantity_ordered: Optional[int],
                       unit_cost: Optional[int]) -> PurchaseOrder:
    po = await _lock_purchase_order(db, po_id)
    _require_draft(po)
    item = _find_item(po, item_id)
    if quantity_ordered is not None:
        item.quantity_ordered = quantity_ordered
    if unit_cost is not None:
        item.unit_cost = unit_cost
    await _recompute_totals(db, po)
    await db.flush()
    return po


async def update_item(db: AsyncSession, po_id: int, item_id: int, *, quantity_ordered: Optional[int] = None,
                      unit_cost: Optional[int] = None) -> PurchaseOrder:
    if quantity_ordered is not None and int(quantity_ordered) <= 0:
        raise InvalidRequestError("Quantity ordered must be greater than zero", quantity=quantity_ordered)
    if unit_cost is not None and int(unit_cost) < 0:
        raise InvalidRequestError("Unit cost cannot be negative", unit_cost=unit_cost)
    po = await atomic(
        db, _update_item, po_id, item_id,
        None if quantity_ordered is None else int(quantity_ordered),
        None if unit_cost is None else int(unit_cost),
    )
    return await get_purchase_order(db, po.id)


async def _remove_item(db: AsyncSession, po_id: int, item_id: int) -> PurchaseOrder:
    po = await _lock_purchase_order(db, po_id)
    _require_draft(po)
    item = _find_item(po, item_id)
    if len(po.items) == 1:
        raise InvalidStateError(
            f"Cannot remove the last item of purchase order {po.po_number}",
            purchase_order_id=po.id,
        )
    po.items.remove(item)
    await _recompute_totals(db, po)
    await db.flush()
    return po


async def remove_item(db: AsyncSession, po_id: int, item_id: int) -> PurchaseOrder:
    po = await atomic(db, _remove_item, po_id, item_id)
    return await get_purchase_order(db, po.id)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_purchase_order(db: AsyncSession, po_id: int) -> PurchaseOrder:
    res = await db.execute(
        select(PurchaseOrder).where(PurchaseOrder.id == po_id).execution_options(populate_existing=True)
    )
    po = res.scalar_one_or_none()
    if po is None:
        raise NotFoundError("Purchase order", po_id)
    return po


async def get_purchase_order_by_number(db: AsyncSession, po_number: str) -> PurchaseOrder:
    res = await db.execute(
        select(PurchaseOrder).where(PurchaseOrder.po_number == po_number).execution_options(populate_existing=True)
    )
    po = res.scalar_one_or_none()
    if po is None:
        raise NotFoundError("Purchase order", po_number)
    return po


async def list_purchase_orders(
    db: AsyncSession,
    status: Optional[str] = None,
    supplier_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> List[PurchaseOrder]:
    stmt = select(PurchaseOrder).execution_options(populate_existing=True)
    if status:
        stmt = stmt.where(PurchaseOrder.status == PurchaseOrderStatus(status))
    if supplier_id is not None:
        stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)
    if start_date is not None:
        stmt = stmt.where(PurchaseOrder.order_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(PurchaseOrder.order_date <= end_date)
    res = await db.execute(stmt.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id.desc()))
    return list(res.scalars().all())
