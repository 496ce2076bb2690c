from datetime import timedelta
from decimal import Decimal

import pytest

from shop_hub.db_models import OrderPaymentStatus
from shop_hub.errors import ValidationError
from shop_hub.services.cart import CartService
from shop_hub.models import ExpenseIn
from shop_hub.services.expenses import ExpenseService
from shop_hub.services.orders import OrderService
from shop_hub.services.reports import FinancialReportService
from shop_hub.utils import utcnow


@pytest.fixture
def window():
    now = utcnow()
    return now - timedelta(days=1), now + timedelta(days=1)


@pytest.fixture
async def sales(db, make_product, guest_checkout):
    """Two paid orders and one unpaid one."""
    mug = await make_product(name="Mug", price="100.00", vat_rate="7", stock=20,
                             cost_price_excluding_vat=Decimal("60.00"))
    rice = await make_product(name="Rice", price="50.00", vat_rate="0", stock=20)
    carts = CartService(db)
    orders = OrderService(db)

    async def place(session_id, lines, **checkout):
        cart = await carts.get_or_create(session_id=session_id)
        for product, quantity in lines:
            cart = await carts.add_item(cart, product.id, quantity)
        return await orders.create_from_cart(cart, guest_checkout(**checkout))

    first = await place("a", [(mug, 2)])
    second = await place("b", [(rice, 1)], shipping_cost=Decimal("40"))
    await place("c", [(mug, 1)])
    for order in (first, second):
        await orders.update_payment_status(order.id, OrderPaymentStatus.paid)
    return mug, rice


async def test_revenue_summary(db, sales, window):
    summary = await FinancialReportService(db).revenue_summary(*window)
    assert summary == {
        "order_count": 2,
        "subtotal_excluding_vat": Decimal("250.00"),
        "total_output_vat": Decimal("14.00"),
        "total_discounts": Decimal("0.00"),
        "total_shipping": Decimal("40.00"),
        "total_amount": Decimal("304.00"),
        "average_order_value": Decimal("152.00"),
    }


async def test_revenue_by_period(db, sales, window):
    service = FinancialReportService(db)
    rows = await service.revenue_by_period(*window, period="month")
    assert len(rows) == 1
    assert rows[0]["period"] == utcnow().strftime("%Y-%m")
    assert rows[0]["order_count"] == 2
    assert rows[0]["total_amount"] == Decimal("304.00")

    with pytest.raises(ValidationError):
        await service.revenue_by_period(*window, period="week")


async def test_top_products(db, sales, window):
    mug, rice = sales
    rows = await FinancialReportService(db).top_products(*window, limit=5)
    assert [r["product_sku"] for r in rows] == [mug.sku, rice.sku]
    assert rows[0]["quantity_sold"] == 2
    assert rows[0]["revenue_excluding_vat"] == Decimal("200.00")
    assert rows[0]["total_vat"] == Decimal("14.00")
    assert rows[0]["revenue_including_vat"] == Decimal("214.00")
    assert rows[0]["product_id"] == mug.id

    assert len(await FinancialReportService(db).top_products(*window, limit=1)) == 1


async def test_profit_by_product(db, sales, window):
    mug, rice = sales
    report = await FinancialReportService(db).profit_by_product(*window)

    by_sku = {p["product_sku"]: p for p in report["products"]}
    assert by_sku[mug.sku]["cost_excluding_vat"] == Decimal("120.00")
    assert by_sku[mug.sku]["profit_excluding_vat"] == Decimal("80.00")
    assert by_sku[mug.sku]["profit_margin_percent"] == Decimal("40.00")
    # unknown cost counts as zero
    assert by_sku[rice.sku]["profit_excluding_vat"] == Decimal("50.00")

    assert report["summary"] == {
        "revenue_excluding_vat": Decimal("250.00"),
        "cost_excluding_vat": Decimal("120.00"),
        "profit_excluding_vat": Decimal("130.00"),
        "profit_margin_percent": Decimal("52.00"),
    }


async def test_vat_summary(db, sales, window):
    report = await FinancialReportService(db).vat_summary(*window)
    assert report["rates"] == [
        {
            "vat_rate": Decimal("0.00"),
            "taxable_amount": Decimal("50.00"),
            "vat_amount": Decimal("0.00"),
            "gross_amount": Decimal("50.00"),
        },
        {
            "vat_rate": Decimal("7.00"),
            "taxable_amount": Decimal("200.00"),
            "vat_amount": Decimal("14.00"),
            "gross_amount": Decimal("214.00"),
        },
    ]
    assert report["total_taxable_amount"] == Decimal("250.00")
    assert report["total_output_vat"] == Decimal("14.00")


async def test_empty_range(db, sales):
    start = utcnow() - timedelta(days=30)
    end = utcnow() - timedelta(days=20)
    service = FinancialReportService(db)

    summary = await service.revenue_summary(start, end)
    assert summary["order_count"] == 0
    assert summary["total_amount"] == Decimal("0.00")
    assert summary["average_order_value"] == Decimal("0.00")
    assert await service.revenue_by_period(start, end) == []
    assert await service.top_products(start, end) == []
    assert (await service.profit_by_product(start, end))["products"] == []
    assert (await service.vat_summary(start, end))["rates"] == []
    tax = await service.tax_report(start, end)
    assert tax["vat_summary"]["net_vat_payable"] == Decimal("0.00")
    assert tax["sales"]["line_count"] == 0


async def test_start_after_end(db, window):
    start, end = window
    with pytest.raises(ValidationError):
        await FinancialReportService(db).revenue_summary(end, start)


@pytest.fixture
async def expenses(db):
    service = ExpenseService(db)
    today = utcnow().date()
    await service.create(ExpenseIn(description="Mailer boxes", category="supplies",
                                   amount_excluding_vat=Decimal("100.00"), expense_date=today))
    await service.create(ExpenseIn(description="Shop rent", category="rent", amount_excluding_vat=Decimal("500.00"),
                                   vat_rate=Decimal("0"), expense_date=today))
    await service.create(ExpenseIn(description="Old invoice", category="supplies",
                                   amount_excluding_vat=Decimal("1000.00"), expense_date=today - timedelta(days=60)))


async def test_tax_report(db, sales, expenses, window):
    report = await FinancialReportService(db).tax_report(*window)

    sales_part = report["sales"]
    assert sales_part["line_count"] == 2
    assert sales_part["total_sales_excluding_vat"] == Decimal("250.00")
    assert sales_part["total_output_vat"] == Decimal("14.00")
    assert sales_part["total_sales_including_vat"] == Decimal("264.00")
    assert [r["vat_rate"] for r in sales_part["rates"]] == [Decimal("0.00"), Decimal("7.00")]

    assert report["expenses"] == {
        "expense_count": 2,
        "total_expenses_excluding_vat": Decimal("600.00"),
        "total_input_vat": Decimal("7.00"),
        "total_expenses_including_vat": Decimal("607.00"),
    }
    assert report["vat_summary"] == {
        "output_vat": Decimal("14.00"),
        "input_vat": Decimal("7.00"),
        "net_vat_payable": Decimal("7.00"),
    }


async def test_tax_report_refund_when_input_vat_is_larger(db, sales, window):
    await ExpenseService(db).create(ExpenseIn(description="Laptop", amount_excluding_vat=Decimal("1000.00"),
                                              expense_date=utcnow().date()))
    report = await FinancialReportService(db).tax_report(*window)
    assert report["vat_summary"]["input_vat"] == Decimal("70.00")
    assert report["vat_summary"]["net_vat_payable"] == Decimal("-56.00")


async def test_financial_report(db, sales, expenses, window):
    report = await FinancialReportService(db).financial_report(*window)

    assert report["revenue"]["total_amount"] == Decimal("304.00")
    assert report["expenses"]["totals"]["total_expenses_excluding_vat"] == Decimal("600.00")
    assert [(c["category"], c["expense_count"], c["total_expenses_including_vat"])
            for c in report["expenses"]["by_category"]] == [
        ("rent", 1, Decimal("500.00")),
        ("supplies", 1, Decimal("107.00")),
    ]
    assert report["profit"]["gross_profit"]["profit_excluding_vat"] == Decimal("130.00")
    assert report["profit"]["net_profit"] == {
        "gross_profit_excluding_vat": Decimal("130.00"),
        "total_expenses_excluding_vat": Decimal("600.00"),
        "net_profit_excluding_vat": Decimal("-470.00"),
    }
    assert report["vat"] == {
        "output_vat": Decimal("14.00"),
        "input_vat": Decimal("7.00"),
        "net_vat_payable": Decimal("7.00"),
    }


async def test_uncategorised_expenses_are_grouped(db, window):
    await ExpenseService(db).create(ExpenseIn(description="Taxi", amount_excluding_vat=Decimal("80.00"),
                                              vat_rate=Decimal("0"), expense_date=utcnow().date()))
    report = await FinancialReportService(db).financial_report(*window)
    assert report["expenses"]["by_category"] == [{
        "category": None,
        "expense_count": 1,
        "total_expenses_excluding_vat": Decimal("80.00"),
        "total_input_vat": Decimal("0.00"),
        "total_expenses_including_vat": Decimal("80.00"),
    }]
    assert report["profit"]["net_profit"]["net_profit_excluding_vat"] == Decimal("-80.00")
