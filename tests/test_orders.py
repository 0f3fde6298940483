from datetime import datetime, timedelta, timezone

import pytest

from core.errors import (
    InsufficientStockError,
    InvalidRequestError,
    InvalidStateError,
    InvalidStatusTransitionError,
    NotFoundError,
)
from db.catalog import Location, Product
from db.enums import OrderStatus, TransactionKind, TransactionType
from services import inventory as inventory_service
from services import ledger
from services import orders as order_service

from conftest import CUSTOMER_ID, LOC_A, LOC_B, OTHER_PRODUCT_ID, PRODUCT_ID


async def _order_txns(db, order_id):
    return await inventory_service.list_transactions(db, reference_type="ORDER", reference_id=str(order_id))


async def test_create_order_prices_and_reserves(db, actor_id, put_stock, stock_of):
    await put_stock(PRODUCT_ID, LOC_A, 10)

    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 2}], actor_id=actor_id, shipping_cost=500
    )

    assert order.status == OrderStatus.PENDING
    assert order.order_number.startswith("ORD-")
    assert (order.subtotal, order.tax, order.shipping_cost, order.total) == (2000, 200, 500, 2700)
    assert len(order.items) == 1
    item = order.items[0]
    assert (item.quantity, item.unit_price, item.unit_cost, item.subtotal, item.tax) == (2, 1000, 600, 2000, 200)

    level = await stock_of(PRODUCT_ID, LOC_A)
    assert (level.quantity, level.reserved_quantity) == (10, 2)
    txns = await _order_txns(db, order.id)
    assert [(t.kind, t.quantity, t.from_location_id) for t in txns] == [(TransactionKind.RESERVE, 2, LOC_A)]


async def test_reservation_splits_highest_available_first(db, actor_id, put_stock, stock_of):
    await put_stock(PRODUCT_ID, LOC_A, 3)
    await put_stock(PRODUCT_ID, LOC_B, 5)

    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 7}], actor_id=actor_id
    )

    txns = await _order_txns(db, order.id)
    assert [(t.from_location_id, t.quantity) for t in txns] == [(LOC_B, 5), (LOC_A, 2)]
    assert (await stock_of(PRODUCT_ID, LOC_A)).reserved_quantity == 2
    assert (await stock_of(PRODUCT_ID, LOC_B)).reserved_quantity == 5


async def test_equal_availability_prefers_lower_location_id(db, actor_id, put_stock):
    await put_stock(PRODUCT_ID, LOC_A, 4)
    await put_stock(PRODUCT_ID, LOC_B, 4)

    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 3}], actor_id=actor_id
    )

    txns = await _order_txns(db, order.id)
    assert [(t.from_location_id, t.quantity) for t in txns] == [(LOC_A, 3)]


async def test_insufficient_stock_creates_nothing(db, actor_id, put_stock, stock_of):
    await put_stock(PRODUCT_ID, LOC_A, 5)
    await put_stock(OTHER_PRODUCT_ID, LOC_A, 1)

    with pytest.raises(InsufficientStockError) as exc:
        await order_service.create_order(
            db,
            CUSTOMER_ID,
            [{"product_id": PRODUCT_ID, "quantity": 2}, {"product_id": OTHER_PRODUCT_ID, "quantity": 3}],
            actor_id=actor_id,
        )
    assert exc.value.product_id == OTHER_PRODUCT_ID
    assert "Gadget" in exc.value.message

    assert await order_service.list_orders(db) == []
    assert (await stock_of(PRODUCT_ID, LOC_A)).reserved_quantity == 0
    assert await inventory_service.list_transactions(db, reference_type="ORDER") == []


async def test_repeated_product_lines_count_together(db, actor_id, put_stock):
    await put_stock(PRODUCT_ID, LOC_A, 3)
    with pytest.raises(InsufficientStockError):
        await order_service.create_order(
            db,
            CUSTOMER_ID,
            [{"product_id": PRODUCT_ID, "quantity": 2}, {"product_id": PRODUCT_ID, "quantity": 2}],
            actor_id=actor_id,
        )


async def test_existing_reservations_reduce_what_orders_can_take(db, actor_id, put_stock):
    await put_stock(PRODUCT_ID, LOC_A, 5)
    await order_service.create_order(db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 4}], actor_id=actor_id)

    with pytest.raises(InsufficientStockError):
        await order_service.create_order(
            db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 2}], actor_id=actor_id
        )


async def test_create_order_validation(db, actor_id, put_stock):
    await put_stock(PRODUCT_ID, LOC_A, 5)
    with pytest.raises(InvalidRequestError):
        await order_service.create_order(db, CUSTOMER_ID, [], actor_id=actor_id)
    with pytest.raises(InvalidRequestError):
        await order_service.create_order(db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 0}], actor_id=actor_id)
    with pytest.raises(NotFoundError):
        await order_service.create_order(db, 999, [{"product_id": PRODUCT_ID, "quantity": 1}], actor_id=actor_id)
    with pytest.raises(NotFoundError):
        await order_service.create_order(db, CUSTOMER_ID, [{"product_id": 999, "quantity": 1}], actor_id=actor_id)


async def test_inactive_product_cannot_be_ordered(db, session_factory, actor_id, put_stock):
    await put_stock(PRODUCT_ID, LOC_A, 5)
    async with session_factory() as other:
        product = await other.get(Product, PRODUCT_ID)
        product.is_active = False
        await other.commit()

    with pytest.raises(InvalidStateError):
        await order_service.create_order(db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 1}], actor_id=actor_id)


async def test_ship_turns_reservation_into_deduction(db, actor_id, put_stock, stock_of):
    await put_stock(PRODUCT_ID, LOC_A, 10)
    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 2}], actor_id=actor_id
    )

    order = await order_service.update_order_status(db, order.id, OrderStatus.PROCESSING, actor_id=actor_id)
    level = await stock_of(PRODUCT_ID, LOC_A)
    assert (level.quantity, level.reserved_quantity) == (10, 2)

    order = await order_service.update_order_status(db, order.id, "SHIPPED", actor_id=actor_id)
    assert order.status == OrderStatus.SHIPPED
    level = await stock_of(PRODUCT_ID, LOC_A)
    assert (level.quantity, level.reserved_quantity) == (8, 0)

    deductions = [t for t in await _order_txns(db, order.id) if t.kind == TransactionKind.DEDUCT]
    assert [(t.transaction_type, t.quantity, t.from_location_id) for t in deductions] == [
        (TransactionType.OUT, 2, LOC_A)
    ]

    order = await order_service.update_order_status(db, order.id, OrderStatus.DELIVERED, actor_id=actor_id)
    assert order.status == OrderStatus.DELIVERED
    assert (await stock_of(PRODUCT_ID, LOC_A)).quantity == 8
    assert len([t for t in await _order_txns(db, order.id) if t.kind == TransactionKind.DEDUCT]) == 1


async def test_ship_deducts_from_each_reserved_location(db, actor_id, put_stock, stock_of):
    await put_stock(PRODUCT_ID, LOC_A, 3)
    await put_stock(PRODUCT_ID, LOC_B, 5)
    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 7}], actor_id=actor_id
    )
    await order_service.update_order_status(db, order.id, OrderStatus.PROCESSING, actor_id=actor_id)
    await order_service.update_order_status(db, order.id, OrderStatus.SHIPPED, actor_id=actor_id)

    a = await stock_of(PRODUCT_ID, LOC_A)
    b = await stock_of(PRODUCT_ID, LOC_B)
    assert (a.quantity, a.reserved_quantity) == (1, 0)
    assert (b.quantity, b.reserved_quantity) == (0, 0)


async def test_cancel_pending_releases_reservation(db, actor_id, put_stock, stock_of):
    await put_stock(PRODUCT_ID, LOC_A, 10)
    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 2}], actor_id=actor_id
    )

    order = await order_service.update_order_status(db, order.id, OrderStatus.CANCELED, actor_id=actor_id)
    assert order.status == OrderStatus.CANCELED
    level = await stock_of(PRODUCT_ID, LOC_A)
    assert (level.quantity, level.reserved_quantity) == (10, 0)

    order_id = order.id
    releases = [t for t in await _order_txns(db, order_id) if t.kind == TransactionKind.UNRESERVE]
    assert [(t.transaction_type, t.quantity) for t in releases] == [(TransactionType.IN, 2)]

    for target in OrderStatus:
        with pytest.raises(InvalidStatusTransitionError):
            await order_service.update_order_status(db, order_id, target, actor_id=actor_id)


async def test_cancel_after_ship_leaves_stock_alone(db, actor_id, put_stock, stock_of):
    await put_stock(PRODUCT_ID, LOC_A, 10)
    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 2}], actor_id=actor_id
    )
    await order_service.update_order_status(db, order.id, OrderStatus.PROCESSING, actor_id=actor_id)
    await order_service.update_order_status(db, order.id, OrderStatus.SHIPPED, actor_id=actor_id)
    await order_service.update_order_status(db, order.id, OrderStatus.CANCELED, actor_id=actor_id)

    level = await stock_of(PRODUCT_ID, LOC_A)
    assert (level.quantity, level.reserved_quantity) == (8, 0)


@pytest.mark.parametrize(
    "path, target",
    [
        ([], OrderStatus.SHIPPED),
        ([], OrderStatus.DELIVERED),
        ([], OrderStatus.PENDING),
        ([OrderStatus.PROCESSING], OrderStatus.DELIVERED),
        ([OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED], OrderStatus.CANCELED),
    ],
)
async def test_invalid_transitions(db, actor_id, put_stock, stock_of, path, target):
    await put_stock(PRODUCT_ID, LOC_A, 10)
    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 2}], actor_id=actor_id
    )
    for status in path:
        await order_service.update_order_status(db, order.id, status, actor_id=actor_id)
    before = await stock_of(PRODUCT_ID, LOC_A)

    with pytest.raises(InvalidStatusTransitionError):
        await order_service.update_order_status(db, order.id, target, actor_id=actor_id)

    after = await stock_of(PRODUCT_ID, LOC_A)
    assert (after.quantity, after.reserved_quantity) == (before.quantity, before.reserved_quantity)


async def test_orders_do_not_consume_each_others_reservations(db, actor_id, put_stock, stock_of):
    await put_stock(PRODUCT_ID, LOC_A, 10)
    first = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 3}], actor_id=actor_id
    )
    second = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 4}], actor_id=actor_id
    )

    await order_service.update_order_status(db, first.id, OrderStatus.CANCELED, actor_id=actor_id)

    level = await stock_of(PRODUCT_ID, LOC_A)
    assert (level.quantity, level.reserved_quantity) == (10, 4)
    assert await ledger.outstanding_reservations(db, PRODUCT_ID, "ORDER", str(second.id)) == {LOC_A: 4}


async def test_unknown_order(db, actor_id):
    with pytest.raises(NotFoundError):
        await order_service.update_order_status(db, 999, OrderStatus.PROCESSING, actor_id=actor_id)
    with pytest.raises(NotFoundError):
        await order_service.get_order_by_number(db, "ORD-00000000-000000")


async def test_unknown_status_string(db, actor_id):
    with pytest.raises(InvalidRequestError):
        await order_service.update_order_status(db, 1, "LOST", actor_id=actor_id)


async def test_details_editable_only_while_pending(db, actor_id, put_stock):
    await put_stock(PRODUCT_ID, LOC_A, 10)
    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 1}], actor_id=actor_id
    )

    order = await order_service.update_order_details(db, order.id, shipping_address="Plot 4", notes="leave at gate")
    assert (order.shipping_address, order.notes) == ("Plot 4", "leave at gate")

    await order_service.update_order_status(db, order.id, OrderStatus.PROCESSING, actor_id=actor_id)
    with pytest.raises(InvalidStateError):
        await order_service.update_order_details(db, order.id, notes="too late")


async def test_calculate_totals_writes_nothing(db, put_stock):
    totals = await order_service.calculate_order_totals(
        db,
        [{"product_id": PRODUCT_ID, "quantity": 3}, {"product_id": OTHER_PRODUCT_ID, "quantity": 1}],
        shipping_cost=100,
    )
    # 333 * 15% = 49.95 -> 50
    assert (totals.subtotal, totals.tax, totals.total) == (3333, 350, 3783)
    assert await order_service.list_orders(db) == []


async def test_lookup_and_list(db, actor_id, put_stock):
    await put_stock(PRODUCT_ID, LOC_A, 10)
    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 1}], actor_id=actor_id
    )

    assert (await order_service.get_order_by_number(db, order.order_number)).id == order.id
    assert [o.id for o in await order_service.list_orders(db, status="PENDING")] == [order.id]
    assert await order_service.list_orders(db, status="SHIPPED") == []
    assert [o.id for o in await order_service.list_orders(db, customer_id=CUSTOMER_ID)] == [order.id]


async def test_orders_never_reserve_at_inactive_locations(db, session_factory, actor_id, put_stock, stock_of):
    await put_stock(PRODUCT_ID, LOC_A, 3)
    await put_stock(PRODUCT_ID, LOC_B, 5)
    async with session_factory() as other:
        location = await other.get(Location, LOC_B)
        location.is_active = False
        await other.commit()

    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 2}], actor_id=actor_id
    )
    txns = await _order_txns(db, order.id)
    assert [(t.from_location_id, t.quantity) for t in txns] == [(LOC_A, 2)]
    assert (await stock_of(PRODUCT_ID, LOC_B)).reserved_quantity == 0

    # only one unit is left at the active location
    with pytest.raises(InsufficientStockError) as exc:
        await order_service.create_order(
            db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 2}], actor_id=actor_id
        )
    assert exc.value.available == 1
    assert (await stock_of(PRODUCT_ID, LOC_B)).reserved_quantity == 0


async def test_settling_walks_products_in_id_order(db, actor_id, put_stock):
    await put_stock(PRODUCT_ID, LOC_A, 5)
    await put_stock(OTHER_PRODUCT_ID, LOC_A, 5)
    await put_stock(OTHER_PRODUCT_ID, LOC_B, 5)
    order = await order_service.create_order(
        db,
        CUSTOMER_ID,
        [
            {"product_id": OTHER_PRODUCT_ID, "quantity": 7},
            {"product_id": PRODUCT_ID, "quantity": 1},
            {"product_id": OTHER_PRODUCT_ID, "quantity": 1},
        ],
        actor_id=actor_id,
    )
    await order_service.update_order_status(db, order.id, OrderStatus.PROCESSING, actor_id=actor_id)
    await order_service.update_order_status(db, order.id, OrderStatus.SHIPPED, actor_id=actor_id)

    deductions = [t for t in await _order_txns(db, order.id) if t.kind == TransactionKind.DEDUCT]
    assert [(t.product_id, t.from_location_id, t.quantity) for t in deductions] == [
        (PRODUCT_ID, LOC_A, 1),
        (OTHER_PRODUCT_ID, LOC_A, 5),
        (OTHER_PRODUCT_ID, LOC_B, 3),
    ]


async def test_payment_must_match_total(db, actor_id, put_stock):
    await put_stock(PRODUCT_ID, LOC_A, 10)
    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 2}], actor_id=actor_id, shipping_cost=300
    )
    order_id = order.id

    with pytest.raises(InvalidRequestError):
        await order_service.process_payment(db, order_id, 2499, "card")
    order = await order_service.get_order(db, order_id)
    assert (order.payment_method, order.paid_at) == (None, None)

    order = await order_service.process_payment(db, order_id, 2500, "card")
    assert order.payment_method == "card"
    assert order.paid_at is not None

    with pytest.raises(InvalidStateError):
        await order_service.process_payment(db, order_id, 2500, "card")


async def test_canceled_or_unknown_orders_cannot_be_paid(db, actor_id, put_stock):
    await put_stock(PRODUCT_ID, LOC_A, 10)
    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 1}], actor_id=actor_id
    )
    order_id, total = order.id, order.total
    await order_service.update_order_status(db, order_id, OrderStatus.CANCELED, actor_id=actor_id)

    with pytest.raises(InvalidStateError):
        await order_service.process_payment(db, order_id, total, "cash")
    with pytest.raises(NotFoundError):
        await order_service.process_payment(db, 999, total, "cash")
    with pytest.raises(InvalidRequestError):
        await order_service.process_payment(db, order_id, total, "  ")


async def test_list_orders_by_date_range(db, actor_id, put_stock):
    await put_stock(PRODUCT_ID, LOC_A, 10)
    order = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 1}], actor_id=actor_id
    )
    now = datetime.now(timezone.utc)

    found = await order_service.list_orders(db, start_date=now - timedelta(hours=1), end_date=now + timedelta(hours=1))
    assert [o.id for o in found] == [order.id]
    assert await order_service.list_orders(db, end_date=now - timedelta(days=1)) == []
    assert await order_service.list_orders(db, start_date=now + timedelta(days=1)) == []


async def test_taken_order_number_is_regenerated(db, actor_id, put_stock, monkeypatch):
    await put_stock(PRODUCT_ID, LOC_A, 10)
    first = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 1}], actor_id=actor_id
    )
    numbers = iter([first.order_number, "ORD-20260101-000001"])
    monkeypatch.setattr(order_service, "generate_order_number", lambda: next(numbers))

    second = await order_service.create_order(
        db, CUSTOMER_ID, [{"product_id": PRODUCT_ID, "quantity": 2}], actor_id=actor_id
    )

    assert second.order_number == "ORD-20260101-000001"
    assert len(await order_service.list_orders(db)) == 2
    # the failed attempt left no reservation behind
    assert await ledger.outstanding_reservations(db, PRODUCT_ID, "ORDER", str(second.id)) == {LOC_A: 2}
    assert (await inventory_service.get_stock_level(db, PRODUCT_ID, LOC_A)).reserved_quantity == 3
