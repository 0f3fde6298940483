"""Lookups into reference data (products, locations, customers, suppliers)."""

from typing import Dict, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import InvalidStateError, NotFoundError
from db.catalog import Customer, Location, Product
from db.supplier import Supplier


async def get_product(db: AsyncSession, product_id: int) -> Product:
    product = await db.get(Product, product_id, populate_existing=True)
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


async def require_active_product(db: AsyncSession, product_id: int) -> Product:
    product = await get_product(db, product_id)
    if not product.is_active:
        raise InvalidStateError(f"Product {product.id} ({product.sku}) is inactive", product_id=product.id)
    return product


async def require_active_products(db: AsyncSession, product_ids: Iterable[int]) -> Dict[int, Product]:
    wanted = set(product_ids)
    res = await db.execute(select(Product).where(Product.id.in_(wanted)).execution_options(populate_existing=True))
    products = {p.id: p for p in res.scalars().all()}
    for product_id in sorted(wanted):
        product = products.get(product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        if not product.is_active:
            raise InvalidStateError(f"Product {product.id} ({product.sku}) is inactive", product_id=product.id)
    return products


async def require_location(db: AsyncSession, location_id: int) -> Location:
    location = await db.get(Location, location_id, populate_existing=True)
    if location is None or not location.is_active:
        raise NotFoundError("Location", location_id)
    return location


async def require_customer(db: AsyncSession, customer_id: int) -> Customer:
    customer = await db.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer", customer_id)
    return customer


async def require_active_supplier(db: AsyncSession, supplier_id: int) -> Supplier:
    supplier = await db.get(Supplier, supplier_id, populate_existing=True)
    if supplier is None:
        raise NotFoundError("Supplier", supplier_id)
    if not supplier.is_active:
        raise InvalidStateError(f"Supplier {supplier.name} is inactive", supplier_id=supplier.id)
    return supplier
