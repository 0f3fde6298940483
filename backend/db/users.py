from fastapi_users.db import SQLAlchemyBaseUserTableUUID
from sqlalchemy import Column, String

from .database import Base


class User(SQLAlchemyBaseUserTableUUID, Base):
    """Authenticated actor. Its id is stamped on every stock transaction, order and PO."""

    __tablename__ = "users"

    full_name = Column(String, nullable=True)
