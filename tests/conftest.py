"""
Shared fixtures: an in-memory SQLite database per test, seeded with one user,
product 10 (price 1000, tax 10%), locations 1 and 2, a customer and a supplier.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["TX_RETRY_BACKOFF_MS"] = "0"

import uuid
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from db import Base
from db.catalog import Customer, Location, Product
from db.enums import LocationType
from db.supplier import Supplier
from db.users import User
from services import inventory as inventory_service

PRODUCT_ID = 10
OTHER_PRODUCT_ID = 11
LOC_A = 1
LOC_B = 2
CUSTOMER_ID = 1
SUPPLIER_ID = 1


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


async def seed_reference_data(session_factory) -> uuid.UUID:
    user_id = uuid.uuid4()
    async with session_factory() as s:
        s.add(
            User(
                id=user_id,
                email="clerk@example.com",
                hashed_password="not-a-real-hash",
                is_active=True,
                is_superuser=False,
                is_verified=True,
            )
        )
        s.add_all(
            [
                Product(id=PRODUCT_ID, sku="WID-001", name="Widget", price=1000, cost=600, tax_rate=Decimal("10")),
                Product(id=OTHER_PRODUCT_ID, sku="GAD-001", name="Gadget", price=333, cost=200, tax_rate=Decimal("15")),
                Location(id=LOC_A, name="Main Warehouse", type=LocationType.WAREHOUSE),
                Location(id=LOC_B, name="City Store", type=LocationType.STORE),
                Customer(id=CUSTOMER_ID, name="Walk-in Customer"),
                Supplier(id=SUPPLIER_ID, name="Acme Supplies"),
            ]
        )
        await s.commit()
    return user_id


@pytest.fixture
async def actor_id(session_factory):
    return await seed_reference_data(session_factory)


@pytest.fixture
async def db(session_factory, actor_id):
    async with session_factory() as session:
        yield session


@pytest.fixture
def stock_of(db):
    async def _stock_of(product_id: int, location_id: int):
        return await inventory_service.get_stock_level(db, product_id, location_id)

    return _stock_of


@pytest.fixture
def put_stock(db, actor_id):
    async def _put_stock(product_id: int, location_id: int, quantity: int):
        await inventory_service.adjust_quantity(
            db, product_id, location_id, quantity, "Opening stock", actor_id=actor_id
        )

    return _put_stock
