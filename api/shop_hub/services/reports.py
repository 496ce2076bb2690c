# shop_hub/services/reports.py
"""
Financial Report Service.

Sales figures cover orders with payment_status = paid created inside
[start, end]; expense figures cover expenses dated inside the same calendar
days. Rows are filtered in SQL and aggregated with pandas; money is summed
as integer satang (cents) so totals stay exact.
"""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pandas as pd
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.db_models import Expense, Order, OrderItem, OrderPaymentStatus, Product
from shop_hub.errors import ValidationError
from shop_hub.services.pricing import round_money, TWO_PLACES
from shop_hub.utils import as_utc

PERIOD_FORMATS = {
    "day": "%Y-%m-%d",
    "month": "%Y-%m",
    "year": "%Y",
}

ORDER_COLUMNS = [
    "order_id", "created_at", "subtotal_excluding_vat", "total_vat_amount",
    "discount_amount", "shipping_cost", "total_amount",
]
ITEM_COLUMNS = [
    "product_id", "product_name", "product_sku", "quantity", "vat_rate",
    "line_total_excluding_vat", "line_total_vat", "line_total_including_vat",
    "cost_price_excluding_vat",
]
MONEY_ORDER_COLUMNS = ORDER_COLUMNS[2:]
MONEY_ITEM_COLUMNS = ["line_total_excluding_vat", "line_total_vat", "line_total_including_vat"]
EXPENSE_COLUMNS = ["expense_id", "category", "amount_excluding_vat", "input_vat_amount", "total_amount"]
MONEY_EXPENSE_COLUMNS = EXPENSE_COLUMNS[2:]


def _cents(value: Any) -> int:
    return int(round_money(value) * 100)


def _money(cents: Any) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(TWO_PLACES)


class FinancialReportService:
    """Revenue, VAT, profit and expense reports."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Frames
    # =========================================================================

    @staticmethod
    def _check_range(start: datetime, end: datetime) -> None:
        if as_utc(start) > as_utc(end):
            raise ValidationError("start_date must not be after end_date")

    def _paid_in_range(self, start: datetime, end: datetime):
        self._check_range(start, end)
        return (
            Order.payment_status == OrderPaymentStatus.paid,
            Order.created_at >= as_utc(start),
            Order.created_at <= as_utc(end),
        )

    async def _orders_frame(self, start: datetime, end: datetime) -> pd.DataFrame:
        stmt = select(
            Order.id, Order.created_at, Order.subtotal_excluding_vat, Order.total_vat_amount,
            Order.discount_amount, Order.shipping_cost, Order.total_amount,
        ).where(*self._paid_in_range(start, end))
        rows = (await self.db.execute(stmt)).all()

        df = pd.DataFrame([tuple(r) for r in rows], columns=ORDER_COLUMNS)
        for col in MONEY_ORDER_COLUMNS:
            df[col] = df[col].map(_cents).astype("int64")
        return df

    async def _items_frame(self, start: datetime, end: datetime) -> pd.DataFrame:
        stmt = (
            select(
                OrderItem.product_id, OrderItem.product_name, OrderItem.product_sku,
                OrderItem.quantity, OrderItem.vat_rate, OrderItem.line_total_excluding_vat,
                OrderItem.line_total_vat, OrderItem.line_total_including_vat,
                Product.cost_price_excluding_vat,
            )
            .join(Order, OrderItem.order_id == Order.id)
            .outerjoin(Product, OrderItem.product_id == Product.id)
            .where(*self._paid_in_range(start, end))
        )
        rows = (await self.db.execute(stmt)).all()

        df = pd.DataFrame([tuple(r) for r in rows], columns=ITEM_COLUMNS)
        for col in MONEY_ITEM_COLUMNS:
            df[col] = df[col].map(_cents).astype("int64")
        df["quantity"] = df["quantity"].astype("int64")
        df["vat_rate"] = df["vat_rate"].map(lambda v: str(round_money(v)))
        # cost of goods sold at the product's current cost price (0 when unknown)
        df["cost_cents"] = (
            df["cost_price_excluding_vat"].map(lambda v: _cents(v) if pd.notna(v) else 0).astype("int64")
            * df["quantity"]
        )
        return df

    async def _expenses_frame(self, start: datetime, end: datetime) -> pd.DataFrame:
        self._check_range(start, end)
        stmt = select(
            Expense.id, Expense.category, Expense.amount_excluding_vat,
            Expense.input_vat_amount, Expense.total_amount,
        ).where(
            Expense.expense_date >= as_utc(start).date(),
            Expense.expense_date <= as_utc(end).date(),
        )
        rows = (await self.db.execute(stmt)).all()

        df = pd.DataFrame([tuple(r) for r in rows], columns=EXPENSE_COLUMNS)
        for col in MONEY_EXPENSE_COLUMNS:
            df[col] = df[col].map(_cents).astype("int64")
        return df

    # =========================================================================
    # Reports
    # =========================================================================

    async def revenue_summary(self, start: datetime, end: datetime) -> Dict[str, Any]:
        df = await self._orders_frame(start, end)
        count = int(len(df))
        total = int(df["total_amount"].sum())
        return {
            "order_count": count,
            "subtotal_excluding_vat": _money(df["subtotal_excluding_vat"].sum()),
            "total_output_vat": _money(df["total_vat_amount"].sum()),
            "total_discounts": _money(df["discount_amount"].sum()),
            "total_shipping": _money(df["shipping_cost"].sum()),
            "total_amount": _money(total),
            "average_order_value": _money(round(total / count)) if count else _money(0),
        }

    async def revenue_by_period(self, start: datetime, end: datetime, period: str = "month") -> List[Dict[str, Any]]:
        fmt = PERIOD_FORMATS.get(period)
        if fmt is None:
            raise ValidationError(f"Invalid period: {period!r}, expected day, month or year")

        df = await self._orders_frame(start, end)
        if df.empty:
            return []
        df["period"] = df["created_at"].map(lambda dt: as_utc(dt).strftime(fmt))

        grouped = (
            df.groupby("period", sort=True)
            .agg(
                order_count=("order_id", "count"),
                subtotal_excluding_vat=("subtotal_excluding_vat", "sum"),
                total_vat_amount=("total_vat_amount", "sum"),
                discount_amount=("discount_amount", "sum"),
                total_amount=("total_amount", "sum"),
            )
            .reset_index()
        )
        return [
            {
                "period": row.period,
                "order_count": int(row.order_count),
                "subtotal_excluding_vat": _money(row.subtotal_excluding_vat),
                "total_vat_amount": _money(row.total_vat_amount),
                "discount_amount": _money(row.discount_amount),
                "total_amount": _money(row.total_amount),
            }
            for row in grouped.itertuples(index=False)
        ]

    async def _by_product(self, start: datetime, end: datetime) -> pd.DataFrame:
        df = await self._items_frame(start, end)
        if df.empty:
            return df
        # sku is always set on the line, product_id is lost once a product is gone
        return (
            df.groupby("product_sku", sort=False)
            .agg(
                product_id=("product_id", "first"),
                product_name=("product_name", "first"),
                quantity_sold=("quantity", "sum"),
                revenue_excluding_vat=("line_total_excluding_vat", "sum"),
                vat=("line_total_vat", "sum"),
                revenue_including_vat=("line_total_including_vat", "sum"),
                cost=("cost_cents", "sum"),
            )
            .reset_index()
        )

    @staticmethod
    def _product_id(value: Any) -> Optional[int]:
        return None if pd.isna(value) else int(value)

    async def top_products(self, start: datetime, end: datetime, limit: int = 10) -> List[Dict[str, Any]]:
        grouped = await self._by_product(start, end)
        if grouped.empty:
            return []
        grouped = grouped.sort_values(
            ["quantity_sold", "revenue_excluding_vat", "product_sku"],
            ascending=[False, False, True],
        ).head(limit)
        return [
            {
                "product_id": self._product_id(row.product_id),
                "product_name": row.product_name,
                "product_sku": row.product_sku,
                "quantity_sold": int(row.quantity_sold),
                "revenue_excluding_vat": _money(row.revenue_excluding_vat),
                "total_vat": _money(row.vat),
                "revenue_including_vat": _money(row.revenue_including_vat),
            }
            for row in grouped.itertuples(index=False)
        ]

    async def profit_by_product(self, start: datetime, end: datetime) -> Dict[str, Any]:
        grouped = await self._by_product(start, end)
        products = []
        revenue_total = cost_total = 0
        if not grouped.empty:
            grouped["profit"] = grouped["revenue_excluding_vat"] - grouped["cost"]
            grouped = grouped.sort_values(["profit", "product_sku"], ascending=[False, True])
            for row in grouped.itertuples(index=False):
                revenue, cost, profit = int(row.revenue_excluding_vat), int(row.cost), int(row.profit)
                revenue_total += revenue
                cost_total += cost
                products.append({
                    "product_id": self._product_id(row.product_id),
                    "product_name": row.product_name,
                    "product_sku": row.product_sku,
                    "quantity_sold": int(row.quantity_sold),
                    "revenue_excluding_vat": _money(revenue),
                    "cost_excluding_vat": _money(cost),
                    "profit_excluding_vat": _money(profit),
                    "profit_margin_percent": round_money(Decimal(profit) * 100 / revenue) if revenue else _money(0),
                })

        profit_total = revenue_total - cost_total
        return {
            "products": products,
            "summary": {
                "revenue_excluding_vat": _money(revenue_total),
                "cost_excluding_vat": _money(cost_total),
                "profit_excluding_vat": _money(profit_total),
                "profit_margin_percent": (
                    round_money(Decimal(profit_total) * 100 / revenue_total) if revenue_total else _money(0)
                ),
            },
        }

    @staticmethod
    def _vat_rates(items: pd.DataFrame) -> List[Dict[str, Any]]:
        if items.empty:
            return []
        grouped = (
            items.groupby("vat_rate", sort=False)
            .agg(
                taxable_amount=("line_total_excluding_vat", "sum"),
                vat_amount=("line_total_vat", "sum"),
                gross_amount=("line_total_including_vat", "sum"),
            )
            .reset_index()
        )
        rates = [
            {
                "vat_rate": Decimal(row.vat_rate),
                "taxable_amount": _money(row.taxable_amount),
                "vat_amount": _money(row.vat_amount),
                "gross_amount": _money(row.gross_amount),
            }
            for row in grouped.itertuples(index=False)
        ]
        return sorted(rates, key=lambda r: r["vat_rate"])

    async def vat_summary(self, start: datetime, end: datetime) -> Dict[str, Any]:
        """Output VAT per rate, from the frozen order lines."""
        df = await self._items_frame(start, end)
        return {
            "rates": self._vat_rates(df),
            "total_taxable_amount": _money(df["line_total_excluding_vat"].sum()),
            "total_output_vat": _money(df["line_total_vat"].sum()),
        }

    @staticmethod
    def _expense_totals(expenses: pd.DataFrame) -> Dict[str, Any]:
        return {
            "expense_count": int(len(expenses)),
            "total_expenses_excluding_vat": _money(expenses["amount_excluding_vat"].sum()),
            "total_input_vat": _money(expenses["input_vat_amount"].sum()),
            "total_expenses_including_vat": _money(expenses["total_amount"].sum()),
        }

    async def tax_report(self, start: datetime, end: datetime) -> Dict[str, Any]:
        """
        VAT return figures for the period.

        Output VAT comes from the lines of paid orders, input VAT from the
        expenses; net_vat_payable = output - input, negative when the shop
        is owed a refund.
        """
        items = await self._items_frame(start, end)
        expenses = await self._expenses_frame(start, end)
        output_vat = int(items["line_total_vat"].sum())
        input_vat = int(expenses["input_vat_amount"].sum())
        return {
            "sales": {
                "line_count": int(len(items)),
                "total_sales_excluding_vat": _money(items["line_total_excluding_vat"].sum()),
                "total_output_vat": _money(output_vat),
                "total_sales_including_vat": _money(items["line_total_including_vat"].sum()),
                "rates": self._vat_rates(items),
            },
            "expenses": self._expense_totals(expenses),
            "vat_summary": {
                "output_vat": _money(output_vat),
                "input_vat": _money(input_vat),
                "net_vat_payable": _money(output_vat - input_vat),
            },
        }

    async def financial_report(self, start: datetime, end: datetime) -> Dict[str, Any]:
        """Revenue, expenses by category, gross and net profit and net VAT in one report."""
        revenue = await self.revenue_summary(start, end)
        profit = await self.profit_by_product(start, end)
        expenses = await self._expenses_frame(start, end)

        by_category = []
        if not expenses.empty:
            grouped = (
                expenses.fillna({"category": ""})
                .groupby("category", sort=True)
                .agg(
                    expense_count=("expense_id", "count"),
                    total_expenses_excluding_vat=("amount_excluding_vat", "sum"),
                    total_input_vat=("input_vat_amount", "sum"),
                    total_expenses_including_vat=("total_amount", "sum"),
                )
                .reset_index()
            )
            by_category = [
                {
                    "category": row.category or None,
                    "expense_count": int(row.expense_count),
                    "total_expenses_excluding_vat": _money(row.total_expenses_excluding_vat),
                    "total_input_vat": _money(row.total_input_vat),
                    "total_expenses_including_vat": _money(row.total_expenses_including_vat),
                }
                for row in grouped.itertuples(index=False)
            ]

        expense_totals = self._expense_totals(expenses)
        gross_profit = profit["summary"]["profit_excluding_vat"]
        expenses_net = expense_totals["total_expenses_excluding_vat"]
        output_vat = revenue["total_output_vat"]
        input_vat = expense_totals["total_input_vat"]
        return {
            "revenue": revenue,
            "expenses": {"totals": expense_totals, "by_category": by_category},
            "profit": {
                "gross_profit": profit["summary"],
                "net_profit": {
                    "gross_profit_excluding_vat": gross_profit,
                    "total_expenses_excluding_vat": expenses_net,
                    "net_profit_excluding_vat": gross_profit - expenses_net,
                },
            },
            "vat": {
                "output_vat": output_vat,
                "input_vat": input_vat,
                "net_vat_payable": output_vat - input_vat,
            },
        }
