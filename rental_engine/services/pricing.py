"""
Booking pricing: rate x quantity x days, plus a pluggable tax policy.
"""

import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import List

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize to cents, half-up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def rental_days(start: date, end: date) -> int:
    """Calendar days between start and end, partial days rounded up."""
    return math.ceil((end - start).total_seconds() / 86400)


class TaxPolicy:
    """Strategy for the tax on a booking subtotal."""

    def compute(self, subtotal: Decimal) -> Decimal:
        raise NotImplementedError


class FlatRateTax(TaxPolicy):

    def __init__(self, rate):
        rate = Decimal(str(rate))
        if rate < 0:
            raise ValueError("Tax rate cannot be negative")
        self.rate = rate

    def compute(self, subtotal: Decimal) -> Decimal:
        return to_money(subtotal * self.rate)

    def __repr__(self):
        return f"<FlatRateTax {self.rate}>"


class NoTax(TaxPolicy):

    def compute(self, subtotal: Decimal) -> Decimal:
        return to_money(0)


@dataclass
class PricedLine:
    product_id: str
    quantity: int
    unit_rate: Decimal
    duration_days: int
    line_total: Decimal


@dataclass
class PriceBreakdown:
    lines: List[PricedLine] = field(default_factory=list)
    subtotal: Decimal = Decimal("0.00")
    tax: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")


def price_lines(lines: List[PricedLine], tax_policy: TaxPolicy) -> PriceBreakdown:
    subtotal = to_money(sum((line.line_total for line in lines), Decimal("0")))
    tax = to_money(tax_policy.compute(subtotal))
    return PriceBreakdown(lines=lines, subtotal=subtotal, tax=tax, total=subtotal + tax)


def price_line(product_id: str, quantity: int, unit_rate, start: date, end: date) -> PricedLine:
    days = rental_days(start, end)
    rate = to_money(unit_rate)
    return PricedLine(
        product_id=product_id,
        quantity=quantity,
        unit_rate=rate,
        duration_days=days,
        line_total=to_money(rate * quantity * days),
    )
