"""Line and document totals. One rounding rule for orders and purchase orders."""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Union

Number = Union[int, float, Decimal, str]


def round_half_away_from_zero(value: Decimal) -> int:
    # ROUND_HALF_UP rounds ties away from zero for negative values too
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_tax(subtotal: int, tax_rate: Optional[Number]) -> int:
    if not tax_rate:
        return 0
    return round_half_away_from_zero(Decimal(subtotal) * Decimal(str(tax_rate)) / Decimal(100))


@dataclass
class PricedLine:
    product_id: int
    quantity: int
    unit_price: int
    subtotal: int
    tax: int


@dataclass
class Totals:
    subtotal: int = 0
    tax: int = 0
    shipping_cost: int = 0
    lines: List[PricedLine] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.subtotal + self.tax + self.shipping_cost

    def add_line(self, product_id: int, quantity: int, unit_price: int, tax_rate: Optional[Number]) -> PricedLine:
        subtotal = int(unit_price) * int(quantity)
        priced = PricedLine(
            product_id=product_id,
            quantity=int(quantity),
            unit_price=int(unit_price),
            subtotal=subtotal,
            tax=line_tax(subtotal, tax_rate),
        )
        self.lines.append(priced)
        self.subtotal += priced.subtotal
        self.tax += priced.tax
        return priced
