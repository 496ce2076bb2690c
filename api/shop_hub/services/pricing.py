# shop_hub/services/pricing.py
"""
VAT and cart/order total arithmetic.

All amounts are Decimal, rounded half-up to 2 places. VAT is charged per line
on the pre-discount price; the voucher discount is taken off the final sum:

    total = subtotal_excluding_vat + total_vat_amount - discount + shipping
"""
from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Union

from shop_hub.db_models import DiscountType

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so floats like 0.1 keep their printed value
    return Decimal(str(value))


def round_money(value: Optional[Number]) -> Decimal:
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def vat_amount(price_excluding_vat: Number, vat_rate: Number) -> Decimal:
    return round_money(to_decimal(price_excluding_vat) * to_decimal(vat_rate) / 100)


def price_including_vat(price_excluding_vat: Number, vat_rate: Number) -> Decimal:
    return round_money(price_excluding_vat) + vat_amount(price_excluding_vat, vat_rate)


def price_excluding_vat(price_including: Number, vat_rate: Number) -> Decimal:
    """Back out the net price from a gross (VAT-inclusive) price."""
    rate = to_decimal(vat_rate)
    return round_money(to_decimal(price_including) * 100 / (100 + rate))


def compute_discount(
    subtotal: Number,
    discount_type: DiscountType,
    discount_value: Number,
    max_discount_amount: Optional[Number] = None,
) -> Decimal:
    """
    Discount for a subtotal (excluding VAT).

    Percentage discounts are capped by `max_discount_amount` when it is set
    (a cap of 0 means no cap); every discount is capped by the subtotal itself.
    """
    subtotal = round_money(subtotal)
    if subtotal <= 0:
        return ZERO

    if DiscountType(discount_type) == DiscountType.percentage:
        discount = round_money(subtotal * to_decimal(discount_value) / 100)
        if max_discount_amount is not None and to_decimal(max_discount_amount) > 0:
            discount = min(discount, round_money(max_discount_amount))
    else:
        discount = round_money(discount_value)

    return max(ZERO, min(discount, subtotal))


# ============================================================================
# Lines and totals
# ============================================================================

@dataclass
class PricedLine:
    """One priced line of a cart or order, prices per unit."""
    product_id: Optional[int]
    quantity: int
    unit_price_excluding_vat: Decimal
    vat_rate: Decimal
    unit_vat_amount: Optional[Decimal] = None
    unit_price_including_vat: Optional[Decimal] = None
    product_name: str = ""
    product_sku: str = ""

    def __post_init__(self):
        self.unit_price_excluding_vat = round_money(self.unit_price_excluding_vat)
        self.vat_rate = round_money(self.vat_rate)
        if self.unit_vat_amount is None:
            self.unit_vat_amount = vat_amount(self.unit_price_excluding_vat, self.vat_rate)
        if self.unit_price_including_vat is None:
            self.unit_price_including_vat = self.unit_price_excluding_vat + self.unit_vat_amount

    @classmethod
    def from_product(cls, product, quantity: int) -> "PricedLine":
        return cls(
            product_id=product.id,
            quantity=quantity,
            unit_price_excluding_vat=product.price_excluding_vat,
            vat_rate=product.vat_rate,
            unit_vat_amount=product.vat_amount,
            unit_price_including_vat=product.price_including_vat,
            product_name=product.name,
            product_sku=product.sku,
        )

    @property
    def line_subtotal(self) -> Decimal:
        return round_money(self.unit_price_excluding_vat * self.quantity)

    @property
    def line_vat(self) -> Decimal:
        return round_money(self.unit_vat_amount * self.quantity)

    @property
    def line_total(self) -> Decimal:
        return self.line_subtotal + self.line_vat


@dataclass
class Totals:
    subtotal_excluding_vat: Decimal = ZERO
    total_vat_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    shipping_cost: Decimal = ZERO
    total_amount: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtotal_excluding_vat": self.subtotal_excluding_vat,
            "total_vat_amount": self.total_vat_amount,
            "discount_amount": self.discount_amount,
            "shipping_cost": self.shipping_cost,
            "total_amount": self.total_amount,
        }


def subtotal_of(lines: Iterable[PricedLine]) -> Decimal:
    return round_money(sum((ln.line_subtotal for ln in lines), ZERO))


def compute_totals(
    lines: List[PricedLine],
    discount_amount: Number = ZERO,
    shipping_cost: Number = ZERO,
) -> Totals:
    subtotal = subtotal_of(lines)
    vat = round_money(sum((ln.line_vat for ln in lines), ZERO))
    discount = min(round_money(discount_amount), subtotal)
    shipping = round_money(shipping_cost)
    return Totals(
        subtotal_excluding_vat=subtotal,
        total_vat_amount=vat,
        discount_amount=discount,
        shipping_cost=shipping,
        total_amount=subtotal + vat - discount + shipping,
    )
