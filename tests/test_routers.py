import httpx
import pytest

from core.auth import current_active_user
from db.database import get_async_session
from db.users import User
from main import app

from conftest import CUSTOMER_ID, LOC_A, LOC_B, PRODUCT_ID, SUPPLIER_ID


@pytest.fixture
async def client(db, actor_id):
    async def _session():
        yield db

    # detached user, so session rollbacks never expire it
    user = User(id=actor_id, email="clerk@example.com", hashed_password="x", is_active=True,
                is_superuser=False, is_verified=True)
    app.dependency_overrides[get_async_session] = _session
    app.dependency_overrides[current_active_user] = lambda: user
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def test_adjust_and_read_stock(client, actor_id):
    r = await client.post("/inventory/adjust", json={"product_id": PRODUCT_ID, "location_id": LOC_A, "quantity": 20, "reason": "count"})
    assert r.status_code == 201
    body = r.json()
    assert (body["transaction_type"], body["kind"], body["quantity"]) == ("IN", "ADJUSTMENT", 20)
    assert body["actor_id"] == str(actor_id)

    r = await client.get(f"/inventory/stock/{PRODUCT_ID}/{LOC_A}")
    assert r.json()["quantity"] == 20

    r = await client.get(f"/inventory/stock/{PRODUCT_ID}/{LOC_B}")
    assert r.status_code == 200
    assert r.json()["available_quantity"] == 0


async def test_domain_errors_map_to_status_and_code(client):
    r = await client.post("/inventory/adjust", json={"product_id": PRODUCT_ID, "location_id": LOC_A, "quantity": -1})
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_ADJUSTMENT"

    r = await client.post("/inventory/transfer", json={"product_id": PRODUCT_ID, "from_location_id": LOC_A, "to_location_id": LOC_B, "quantity": 1})
    assert r.status_code == 409
    assert r.json()["code"] == "INSUFFICIENT_STOCK"

    r = await client.post("/inventory/reserve", json={"product_id": 999, "location_id": LOC_A, "quantity": 1, "reference_id": "x", "reference_type": "MANUAL"})
    assert r.status_code == 404
    assert r.json()["code"] == "NOT_FOUND"


async def test_request_validation(client):
    r = await client.post("/inventory/adjust", json={"product_id": PRODUCT_ID, "location_id": LOC_A, "quantity": 0})
    assert r.status_code == 422
    r = await client.post("/orders/", json={"customer_id": CUSTOMER_ID, "items": []})
    assert r.status_code == 422


async def test_order_lifecycle(client):
    await client.post("/inventory/adjust", json={"product_id": PRODUCT_ID, "location_id": LOC_A, "quantity": 10})

    r = await client.post("/orders/calculate-totals", json={"items": [{"product_id": PRODUCT_ID, "quantity": 2}], "shipping_cost": 300})
    assert r.status_code == 200
    assert r.json()["total"] == 2500

    r = await client.post("/orders/", json={"customer_id": CUSTOMER_ID, "items": [{"product_id": PRODUCT_ID, "quantity": 2}], "shipping_cost": 300})
    assert r.status_code == 201
    order = r.json()
    assert (order["status"], order["subtotal"], order["tax"], order["total"]) == ("PENDING", 2000, 200, 2500)

    r = await client.get(f"/orders/number/{order['order_number']}")
    assert r.json()["id"] == order["id"]

    r = await client.put(f"/orders/{order['id']}", json={"notes": "fragile"})
    assert r.json()["notes"] == "fragile"

    r = await client.patch(f"/orders/{order['id']}/status", json={"status": "shipped"})
    assert r.status_code == 409
    assert r.json()["code"] == "INVALID_STATUS_TRANSITION"

    for status in ("PROCESSING", "SHIPPED"):
        r = await client.patch(f"/orders/{order['id']}/status", json={"status": status})
        assert r.status_code == 200

    stock = (await client.get(f"/inventory/stock/{PRODUCT_ID}/{LOC_A}")).json()
    assert (stock["quantity"], stock["reserved_quantity"]) == (8, 0)

    r = await client.get("/inventory/transactions", params={"reference_type": "ORDER", "reference_id": str(order["id"])})
    assert [t["kind"] for t in r.json()] == ["RESERVE", "DEDUCT"]

    r = await client.get("/orders/", params={"status": "SHIPPED"})
    assert [o["id"] for o in r.json()] == [order["id"]]


async def test_purchase_order_receiving(client):
    r = await client.post("/purchase-orders/", json={"supplier_id": SUPPLIER_ID, "items": [{"product_id": PRODUCT_ID, "quantity_ordered": 10}]})
    assert r.status_code == 201
    po = r.json()
    item_id = po["items"][0]["id"]

    r = await client.post(f"/purchase-orders/{po['id']}/receive", json={"items": [{"item_id": item_id, "quantity_received": 6, "location_id": LOC_A}]})
    assert r.status_code == 409
    assert r.json()["code"] == "INVALID_STATE"

    r = await client.patch(f"/purchase-orders/{po['id']}/status", json={"status": "SUBMITTED"})
    assert r.json()["status"] == "SUBMITTED"

    r = await client.post(f"/purchase-orders/{po['id']}/receive", json={"items": [{"item_id": item_id, "quantity_received": 6, "location_id": LOC_A}]})
    assert r.status_code == 200
    assert r.json()["items"][0]["quantity_outstanding"] == 4

    r = await client.post(f"/purchase-orders/{po['id']}/receive", json={"items": [{"item_id": item_id, "quantity_received": 5, "location_id": LOC_A}]})
    assert r.status_code == 409
    assert r.json()["code"] == "OVER_RECEIPT"

    r = await client.post(f"/purchase-orders/{po['id']}/receive", json={"items": [{"item_id": item_id, "quantity_received": 4, "location_id": LOC_B}]})
    assert r.json()["status"] == "RECEIVED"

    stock = (await client.get("/inventory/stock", params={"product_id": PRODUCT_ID})).json()
    assert [(s["location_id"], s["quantity"]) for s in stock] == [(LOC_A, 6), (LOC_B, 4)]


async def test_purchase_order_item_editing(client):
    po = (await client.post("/purchase-orders/", json={"supplier_id": SUPPLIER_ID, "items": [{"product_id": PRODUCT_ID, "quantity_ordered": 2}]})).json()

    r = await client.post(f"/purchase-orders/{po['id']}/items", json={"product_id": PRODUCT_ID, "quantity_ordered": 1, "unit_cost": 100})
    assert r.status_code == 201
    items = r.json()["items"]
    assert len(items) == 2

    r = await client.put(f"/purchase-orders/{po['id']}/items/{items[1]['id']}", json={"quantity_ordered": 3})
    assert r.json()["items"][1]["subtotal"] == 300

    r = await client.delete(f"/purchase-orders/{po['id']}/items/{items[1]['id']}")
    assert r.status_code == 200
    assert r.json()["subtotal"] == 1200

    r = await client.delete(f"/purchase-orders/{po['id']}/items/{items[0]['id']}")
    assert r.status_code == 409


async def test_low_stock_report(client):
    await client.post("/inventory/adjust", json={"product_id": PRODUCT_ID, "location_id": LOC_A, "quantity": 3})
    r = await client.get("/inventory/low-stock", params={"threshold": 5})
    rows = {row["product_id"]: row for row in r.json()}
    assert rows[PRODUCT_ID]["total_quantity"] == 3
    assert rows[PRODUCT_ID]["deficit"] == 2


async def test_order_payment_and_date_filter(client):
    await client.post("/inventory/adjust", json={"product_id": PRODUCT_ID, "location_id": LOC_A, "quantity": 10})
    order = (await client.post("/orders/", json={"customer_id": CUSTOMER_ID, "items": [{"product_id": PRODUCT_ID, "quantity": 1}]})).json()

    r = await client.post(f"/orders/{order['id']}/payment", json={"amount": 1, "payment_method": "card"})
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_REQUEST"

    r = await client.post(f"/orders/{order['id']}/payment", json={"amount": order["total"], "payment_method": "card"})
    assert r.status_code == 200
    assert r.json()["payment_method"] == "card"
    assert r.json()["paid_at"] is not None

    r = await client.get("/orders/", params={"start_date": "2000-01-01T00:00:00Z", "end_date": "2000-12-31T00:00:00Z"})
    assert r.json() == []
    r = await client.get("/orders/", params={"start_date": "2000-01-01T00:00:00Z"})
    assert [o["id"] for o in r.json()] == [order["id"]]

    r = await client.get("/purchase-orders/", params={"end_date": "2000-01-01T00:00:00Z"})
    assert r.json() == []
