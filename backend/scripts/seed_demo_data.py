import asyncio
import sys
from pathlib import Path
from decimal import Decimal

"""
Seed demo reference data (locations, products, a customer, a supplier) and
opening stock into the Postgres DB.

This script can be run from either:
- backend/: `python scripts/seed_demo_data.py`
- repo root: `python backend/scripts/seed_demo_data.py`

Opening stock is booked through the ledger as adjustments, so every unit has
a transaction behind it. Re-running only tops locations up to the target.
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import func, select

from core.logging_config import configure_logging
from db.database import async_session_maker, create_db_and_tables
from db.catalog import Customer, Location, Product
from db.enums import LocationType
from db.supplier import Supplier
from db.users import User
from services import ledger
from services.inventory import apply_adjustment

from fastapi_users.password import PasswordHelper

password_helper = PasswordHelper()


async def get_or_create_user(session, email: str, password: str) -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(
        email=email,
        hashed_password=password_helper.hash(password),
        is_active=True,
        is_superuser=True,
        is_verified=True,
        full_name="Demo Admin",
    )
    session.add(user)
    await session.flush()
    return user


async def get_or_create_location(session, name: str, type_: LocationType, address: str | None = None) -> Location:
    result = await session.execute(select(Location).where(func.lower(Location.name) == name.strip().lower()))
    location = result.scalar_one_or_none()
    if location:
        return location

    location = Location(name=name.strip(), type=type_, address=address)
    session.add(location)
    await session.flush()
    return location


async def upsert_product(session, sku: str, name: str, price: int, cost: int, tax_rate: Decimal,
                         reorder_point: int = 10) -> Product:
    result = await session.execute(select(Product).where(Product.sku == sku))
    product = result.scalar_one_or_none()
    if product:
        # Keep prices up-to-date if you re-run seed with new values
        product.name = name
        product.price = price
        product.cost = cost
        product.tax_rate = tax_rate
        await session.flush()
        return product

    product = Product(
        sku=sku,
        name=name,
        price=price,
        cost=cost,
        tax_rate=tax_rate,
        reorder_point=reorder_point,
    )
    session.add(product)
    await session.flush()
    return product


async def get_or_create_supplier(session, name: str, contact: str | None = None) -> Supplier:
    result = await session.execute(select(Supplier).where(func.lower(Supplier.name) == name.strip().lower()))
    supplier = result.scalar_one_or_none()
    if supplier:
        return supplier

    supplier = Supplier(name=name.strip(), contact=contact)
    session.add(supplier)
    await session.flush()
    return supplier


async def get_or_create_customer(session, name: str, email: str | None = None) -> Customer:
    result = await session.execute(select(Customer).where(func.lower(Customer.name) == name.strip().lower()))
    customer = result.scalar_one_or_none()
    if customer:
        return customer

    customer = Customer(name=name.strip(), email=email)
    session.add(customer)
    await session.flush()
    return customer


async def top_up(session, product: Product, location: Location, target: int, actor_id) -> None:
    stock = await ledger.get_stock(session, product.id, location.id)
    current = int(stock.quantity) if stock else 0
    if current < target:
        await apply_adjustment(session, product.id, location.id, target - current, "Opening stock", actor_id=actor_id)


async def seed():
    configure_logging()
    await create_db_and_tables()

    async with async_session_maker() as session:
        user = await get_or_create_user(session, "admin@example.com", "admin123")

        warehouse = await get_or_create_location(session, "Main Warehouse", LocationType.WAREHOUSE, "Plot 12, Industrial Area")
        store = await get_or_create_location(session, "City Store", LocationType.STORE, "Kampala Road 4")

        widget = await upsert_product(session, "WID-001", "Widget", price=1000, cost=600, tax_rate=Decimal("10"))
        gadget = await upsert_product(session, "GAD-001", "Gadget", price=2500, cost=1500, tax_rate=Decimal("18"))
        cable = await upsert_product(session, "CAB-001", "USB Cable", price=350, cost=120, tax_rate=Decimal("18"), reorder_point=50)

        await get_or_create_supplier(session, "Acme Supplies", contact="orders@acme.example")
        await get_or_create_customer(session, "Walk-in Customer", email="walkin@example.com")

        await top_up(session, widget, warehouse, 100, user.id)
        await top_up(session, widget, store, 20, user.id)
        await top_up(session, gadget, warehouse, 40, user.id)
        await top_up(session, cable, store, 30, user.id)

        await session.commit()


if __name__ == "__main__":
    asyncio.run(seed())
