from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, Numeric, String, Text

from .database import Base, utcnow
from .enums import LocationType


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    sku = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    # integer currency units
    price = Column(Integer, nullable=False)
    cost = Column(Integer, nullable=False)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)  # percent

    reorder_point = Column(Integer, nullable=False, default=10)
    reorder_quantity = Column(Integer, nullable=False, default=20)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    type = Column(Enum(LocationType, native_enum=False, length=20), nullable=False, default=LocationType.WAREHOUSE)
    address = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    address = Column(Text, nullable=True)
