from sqlalchemy import CheckConstraint, Column, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID

from ..database import Base, utcnow
from ..enums import TransactionKind, TransactionType


class StockTransaction(Base):
    """Append-only: rows are inserted with their parent stock mutation and never updated."""

    __tablename__ = "stock_transactions"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_transactions_quantity_positive"),
    )

    id = Column(Integer, primary_key=True)
    transaction_type = Column(Enum(TransactionType, native_enum=False, length=16), nullable=False, index=True)
    kind = Column(Enum(TransactionKind, native_enum=False, length=16), nullable=False, index=True)

    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    from_location_id = Column(Integer, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True, index=True)
    to_location_id = Column(Integer, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True, index=True)

    # correlation to the order / purchase order / adjustment that caused the row
    reference_id = Column(String, nullable=True, index=True)
    reference_type = Column(String, nullable=True, index=True)

    actor_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)