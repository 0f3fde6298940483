from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import Base, utcnow


class StockRecord(Base):
    __tablename__ = "stock_records"
    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="ux_stock_records_product_location"),
        CheckConstraint("quantity >= 0", name="ck_stock_records_quantity_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_stock_records_reserved_non_negative"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_stock_records_reserved_within_quantity"),
    )

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False, default=0)
    reserved_quantity = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    product = relationship("Product", lazy="raise")
    location = relationship("Location", lazy="raise")

    @property
    def available_quantity(self) -> int:
        return int(self.quantity or 0) - int(self.reserved_quantity or 0)
