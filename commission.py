"""Commission on merchandise value. Shipping never enters the base."""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

from config import settings
from schemas import OrderItem, OrderItemIn

CENT = Decimal("0.01")


@dataclass(frozen=True)
class Commission:
    base: float
    amount: float
    rate: float


def round_money(value: Union[float, Decimal]) -> float:
    """Two decimals, halves rounded away from zero (0.125 -> 0.13)."""
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def line_items_subtotal(items: Iterable[Union[OrderItem, OrderItemIn, dict]]) -> float:
    total = 0.0
    for item in items:
        if isinstance(item, dict):
            total += float(item.get("price", 0)) * int(item.get("quantity", 1))
        else:
            total += item.price * item.quantity
    return round_money(total)


def calculate_commission(subtotal: Optional[float] = None, discount_amount: Optional[float] = None,
                         rate: Optional[float] = None, items=None) -> Commission:
    if subtotal is None:
        subtotal = line_items_subtotal(items or [])
    if rate is None:
        rate = settings.DEFAULT_COMMISSION_RATE
    base = max(Decimal("0"), Decimal(str(subtotal)) - Decimal(str(discount_amount or 0)))
    amount = (base * Decimal(str(rate)) / 100).quantize(CENT, rounding=ROUND_HALF_UP)
    return Commission(base=round_money(base), amount=float(amount), rate=float(rate))
