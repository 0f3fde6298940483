"""
Order fulfilment: price and persist an order while reserving its stock, and
carry reservations through the order's status changes.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.errors import (
    InsufficientStockError,
    InvalidRequestError,
    InvalidStateError,
    InvalidStatusTransitionError,
    NotFoundError,
)
from core.generators import generate_order_number
from core.pricing import Totals
from db.database import utcnow
from db.enums import OrderStatus, ReferenceType
from db.inventory.stock import StockRecord
from db.order import Order, OrderItem
from services import catalog, ledger, reservations
from services.unit_of_work import atomic, flush_new_document

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
}

DEDUCTING_STATUSES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})


@dataclass
class OrderLine:
    product_id: int
    quantity: int


def _normalize_lines(lines: Iterable) -> List[OrderLine]:
    out: List[OrderLine] = []
    for line in lines:
        if isinstance(line, dict):
            product_id, quantity = line.get("product_id"), line.get("quantity")
        else:
            product_id, quantity = line.product_id, line.quantity
        if product_id is None:
            raise InvalidRequestError("Every order line needs a product_id")
        quantity = int(quantity or 0)
        if quantity <= 0:
            raise InvalidRequestError(
                f"Quantity for product {product_id} must be greater than zero",
                product_id=product_id,
                quantity=quantity,
            )
        out.append(OrderLine(product_id=int(product_id), quantity=quantity))
    if not out:
        raise InvalidRequestError("An order needs at least one line")
    return out


def _check_shipping(shipping_cost) -> int:
    shipping_cost = int(shipping_cost or 0)
    if shipping_cost < 0:
        raise InvalidRequestError("Shipping cost cannot be negative", shipping_cost=shipping_cost)
    return shipping_cost


def order_reference(order: Order) -> str:
    return str(order.id)


async def _price(db: AsyncSession, lines: List[OrderLine], shipping_cost: int):
    products = await catalog.require_active_products(db, (l.product_id for l in lines))
    totals = Totals(shipping_cost=shipping_cost)
    for line in lines:
        product = products[line.product_id]
        totals.add_line(line.product_id, line.quantity, product.price, product.tax_rate)
    return products, totals


async def calculate_order_totals(db: AsyncSession, lines: Iterable, shipping_cost: int = 0) -> Totals:
    """Price preview; nothing is written or reserved."""
    lines = _normalize_lines(lines)
    _, totals = await _price(db, lines, _check_shipping(shipping_cost))
    return totals


async def _create_order(
    db: AsyncSession,
    customer_id: int,
    lines: List[OrderLine],
    *,
    actor_id,
    shipping_cost: int = 0,
    shipping_address: Optional[str] = None,
    shipping_method: Optional[str] = None,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    ledger.require_actor(actor_id)
    await catalog.require_customer(db, customer_id)
    products, totals = await _price(db, lines, shipping_cost)

    requested: Dict[int, int] = OrderedDict()
    for line in lines:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

    # lock every stock row of every product, products in id order
    stocks: Dict[int, List[StockRecord]] = {}
    for product_id in sorted(requested):
        rows = await ledger.lock_product_stocks(db, product_id)
        available = sum(max(r.available_quantity, 0) for r in rows)
        if available < requested[product_id]:
            product = products[product_id]
            raise InsufficientStockError(
                f"Insufficient stock for product {product.name} ({product.sku}). "
                f"Available: {available}, requested: {requested[product_id]}",
                product_id=product_id,
                requested=requested[product_id],
                available=available,
            )
        stocks[product_id] = rows

    order = Order(
        order_number=generate_order_number(),
        customer_id=customer_id,
        actor_id=actor_id,
        status=OrderStatus.PENDING,
        shipping_address=shipping_address,
        shipping_method=shipping_method,
        payment_method=payment_method,
        subtotal=totals.subtotal,
        tax=totals.tax,
        shipping_cost=totals.shipping_cost,
        total=totals.total,
        currency=settings.default_currency,
        notes=notes,
    )
    for priced in totals.lines:
        order.items.append(
            OrderItem(
                product_id=priced.product_id,
                quantity=priced.quantity,
                unit_price=priced.unit_price,
                unit_cost=int(products[priced.product_id].cost or 0),
                subtotal=priced.subtotal,
                tax=priced.tax,
            )
        )
    db.add(order)
    await flush_new_document(db, order.order_number)

    reference = order_reference(order)
    for item in order.items:
        await reservations.allocate(
            db,
            stocks[item.product_id],
            item.quantity,
            reference,
            ReferenceType.ORDER.value,
            actor_id=actor_id,
            notes=f"Reserved for order {order.order_number}",
        )
    await db.flush()
    logger.info(
        "Created order %s (%d lines, total %d %s) for customer %s",
        order.order_number, len(order.items), order.total, order.currency, customer_id,
    )
    return order


async def create_order(
    db: AsyncSession,
    customer_id: int,
    lines: Iterable,
    *,
    actor_id,
    shipping_cost: int = 0,
    shipping_address: Optional[str] = None,
    shipping_method: Optional[str] = None,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    lines = _normalize_lines(lines)
    shipping_cost = _check_shipping(shipping_cost)
    order = await atomic(
        db, _create_order, customer_id, lines,
        actor_id=actor_id,
        shipping_cost=shipping_cost,
        shipping_address=shipping_address,
        shipping_method=shipping_method,
        payment_method=payment_method,
        notes=notes,
    )
    return await get_order(db, order.id)


async def _lock_order(db: AsyncSession, order_id: int) -> Order:
    res = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = res.scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order", order_id)
    return order


async def _settle_reservations(db: AsyncSession, order: Order, target: OrderStatus, actor_id) -> None:
    reference = order_reference(order)
    step = reservations.deduct_outstanding if target in DEDUCTING_STATUSES else reservations.release_outstanding
    note = f"Order {order.order_number} {target.value.lower()}"

    quantities: Dict[int, int] = {}
    for item in order.items:
        quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

    # (product_id, location_id) lock order, same as order creation
    for product_id in sorted(quantities):
        await step(
            db,
            product_id,
            quantities[product_id],
            reference,
            ReferenceType.ORDER.value,
            actor_id=actor_id,
            notes=note,
        )


async def _update_order_status(db: AsyncSession, order_id: int, status: OrderStatus, *, actor_id) -> Order:
    ledger.require_actor(actor_id)
    order = await _lock_order(db, order_id)
    current = OrderStatus(order.status)
    if status not in ORDER_TRANSITIONS[current]:
        raise InvalidStatusTransitionError("order", current.value, status.value)

    if status in DEDUCTING_STATUSES or status == OrderStatus.CANCELED:
        await _settle_reservations(db, order, status, actor_id)

    order.status = status
    await db.flush()
    logger.info("Order %s: %s -> %s", order.order_number, current.value, status.value)
    return order


async def update_order_status(db: AsyncSession, order_id: int, status, *, actor_id) -> Order:
    try:
        status = OrderStatus(status)
    except ValueError:
        raise InvalidRequestError(f"Unknown order status {status!r}")
    order = await atomic(db, _update_order_status, order_id, status, actor_id=actor_id)
    return await get_order(db, order.id)


async def _update_order_details(db: AsyncSession, order_id: int, changes: dict) -> Order:
    order = await _lock_order(db, order_id)
    if order.status != OrderStatus.PENDING:
        raise InvalidStateError(
            f"Order {order.order_number} can only be edited while PENDING (is {order.status.value})",
            order_id=order.id,
        )
    for field_name, value in changes.items():
        setattr(order, field_name, value)
    await db.flush()
    return order


async def update_order_details(
    db: AsyncSession,
    order_id: int,
    *,
    shipping_address: Optional[str] = None,
    shipping_method: Optional[str] = None,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
) -> Order:
    changes = {
        k: v
        for k, v in (
            ("shipping_address", shipping_address),
            ("shipping_method", shipping_method),
            ("payment_method", payment_method),
            ("notes", notes),
        )
        if v is not None
    }
    order = await atomic(db, _update_order_details, order_id, changes)
    return await get_order(db, order.id)


async def _process_payment(db: AsyncSession, order_id: int, amount: int, payment_method: str) -> Order:
    order = await _lock_order(db, order_id)
    if order.status == OrderStatus.CANCELED:
        raise InvalidStateError(f"Order {order.order_number} is canceled", order_id=order.id)
    if order.paid_at is not None:
        raise InvalidStateError(f"Order {order.order_number} is already paid", order_id=order.id)
    if amount != order.total:
        raise InvalidRequestError(
            f"Payment amount {amount} does not match order total {order.total}",
            amount=amount,
            total=order.total,
        )
    order.payment_method = payment_method
    order.paid_at = utcnow()
    await db.flush()
    logger.info("Order %s paid: %d %s by %s", order.order_number, amount, order.currency, payment_method)
    return order


async def process_payment(db: AsyncSession, order_id: int, amount: int, payment_method: str) -> Order:
    """Record payment of the full order total; gateway integration is out of scope."""
    if not payment_method or not str(payment_method).strip():
        raise InvalidRequestError("A payment method is required")
    order = await atomic(db, _process_payment, order_id, int(amount), str(payment_method).strip())
    return await get_order(db, order.id)


async def get_order(db: AsyncSession, order_id: int) -> Order:
    res = await db.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    order = res.scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order", order_id)
    return order


async def get_order_by_number(db: AsyncSession, order_number: str) -> Order:
    res = await db.execute(
        select(Order).where(Order.order_number == order_number).execution_options(populate_existing=True)
    )
    order = res.scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order", order_number)
    return order


async def list_orders(
    db: AsyncSession,
    status: Optional[str] = None,
    customer_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> List[Order]:
    stmt = select(Order).execution_options(populate_existing=True)
    if status:
        stmt = stmt.where(Order.status == OrderStatus(status))
    if customer_id is not None:
        stmt = stmt.where(Order.customer_id == customer_id)
    # both bounds inclusive
    if start_date is not None:
        stmt = stmt.where(Order.order_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(Order.order_date <= end_date)
    res = await db.execute(stmt.order_by(Order.order_date.desc(), Order.id.desc()))
    return list(res.scalars().all())
