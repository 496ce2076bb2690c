from decimal import Decimal

from shop_hub.db_models import DiscountType
from shop_hub.services.pricing import (
    PricedLine, compute_discount, compute_totals, price_excluding_vat, price_including_vat,
    round_money, subtotal_of, vat_amount,
)


def test_round_money_is_half_up():
    assert round_money("2.345") == Decimal("2.35")
    assert round_money("2.344") == Decimal("2.34")
    assert round_money(0.1) == Decimal("0.10")
    assert round_money(None) == Decimal("0.00")


def test_vat_amount_and_gross_price():
    assert vat_amount("100.00", "7.00") == Decimal("7.00")
    assert price_including_vat("100.00", "7.00") == Decimal("107.00")
    # 33.33 * 7% = 2.3331
    assert vat_amount("33.33", "7") == Decimal("2.33")
    assert price_excluding_vat("107.00", "7") == Decimal("100.00")


def test_percentage_discount_capped_by_max():
    assert compute_discount("1000", DiscountType.percentage, "20") == Decimal("200.00")
    assert compute_discount("1000", DiscountType.percentage, "20", max_discount_amount="150") == Decimal("150.00")


def test_zero_cap_means_uncapped():
    assert compute_discount("1000", DiscountType.percentage, "20", max_discount_amount="0") == Decimal("200.00")


def test_fixed_discount_never_exceeds_subtotal():
    assert compute_discount("80", DiscountType.fixed_amount, "100") == Decimal("80.00")
    assert compute_discount("0", DiscountType.fixed_amount, "100") == Decimal("0.00")


def test_line_amounts_use_per_unit_vat():
    line = PricedLine(product_id=1, quantity=3, unit_price_excluding_vat=Decimal("33.33"), vat_rate=Decimal("7"))
    assert line.unit_vat_amount == Decimal("2.33")
    assert line.unit_price_including_vat == Decimal("35.66")
    assert line.line_subtotal == Decimal("99.99")
    assert line.line_vat == Decimal("6.99")
    assert line.line_total == Decimal("106.98")


def test_totals_single_item_no_discount():
    lines = [PricedLine(product_id=1, quantity=1, unit_price_excluding_vat=Decimal("100"), vat_rate=Decimal("7"))]
    totals = compute_totals(lines)
    assert totals.subtotal_excluding_vat == Decimal("100.00")
    assert totals.total_vat_amount == Decimal("7.00")
    assert totals.total_amount == Decimal("107.00")


def test_totals_discount_comes_off_after_vat():
    lines = [PricedLine(product_id=1, quantity=1, unit_price_excluding_vat=Decimal("100"), vat_rate=Decimal("7"))]
    discount = compute_discount(subtotal_of(lines), DiscountType.percentage, "10")
    totals = compute_totals(lines, discount_amount=discount, shipping_cost="50")
    # VAT is charged on the undiscounted subtotal
    assert totals.total_vat_amount == Decimal("7.00")
    assert totals.discount_amount == Decimal("10.00")
    assert totals.total_amount == Decimal("147.00")


def test_totals_mixed_vat_rates():
    lines = [
        PricedLine(product_id=1, quantity=2, unit_price_excluding_vat=Decimal("50"), vat_rate=Decimal("7")),
        PricedLine(product_id=2, quantity=1, unit_price_excluding_vat=Decimal("200"), vat_rate=Decimal("0")),
    ]
    totals = compute_totals(lines)
    assert totals.subtotal_excluding_vat == Decimal("300.00")
    assert totals.total_vat_amount == Decimal("7.00")
    assert totals.total_amount == Decimal("307.00")
    assert totals.to_dict()["total_amount"] == Decimal("307.00")


def test_empty_totals_are_zero():
    totals = compute_totals([], discount_amount="10")
    assert totals.discount_amount == Decimal("0.00")
    assert totals.total_amount == Decimal("0.00")
