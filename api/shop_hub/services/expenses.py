# shop_hub/services/expenses.py
"""
Expense Service - business purchases with input VAT.

Input VAT defaults to amount x rate / 100 and the total to amount + input VAT;
either can be given explicitly when the supplier's tax invoice differs.
"""
from __future__ import annotations
import logging
from datetime import date
from typing import Optional, List, Tuple

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.db_models import Expense
from shop_hub.errors import NotFoundError, ValidationError
from shop_hub.models import ExpenseIn, ExpenseUpdate
from shop_hub.services.pricing import ZERO, round_money, vat_amount
from shop_hub.settings import settings

log = logging.getLogger(__name__)


def check_range(start_date: Optional[date], end_date: Optional[date]) -> None:
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must not be after end_date")


class ExpenseService:
    """Service for expense records."""

    SORT_FIELDS = {
        "expense_date": Expense.expense_date,
        "total_amount": Expense.total_amount,
        "category": Expense.category,
        "created_at": Expense.created_at,
    }

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, expense_id: int) -> Expense:
        expense = await self.db.get(Expense, expense_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}", code="EXPENSE_NOT_FOUND")
        return expense

    @staticmethod
    def _filters(
        category: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        search: Optional[str] = None,
    ) -> list:
        check_range(start_date, end_date)
        conditions = []
        if category:
            conditions.append(Expense.category == category)
        if start_date:
            conditions.append(Expense.expense_date >= start_date)
        if end_date:
            conditions.append(Expense.expense_date <= end_date)
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(or_(
                Expense.description.ilike(pattern),
                Expense.vendor_name.ilike(pattern),
                Expense.notes.ilike(pattern),
            ))
        return conditions

    async def list(
        self,
        category: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        search: Optional[str] = None,
        sort_by: str = "expense_date",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Expense], int]:
        conditions = self._filters(category, start_date, end_date, search)
        total = (await self.db.execute(select(func.count(Expense.id)).where(*conditions))).scalar_one()

        column = self.SORT_FIELDS.get(sort_by, Expense.expense_date)
        order = column.asc() if sort_order.lower() == "asc" else column.desc()
        stmt = (
            select(Expense)
            .where(*conditions)
            .order_by(order, Expense.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars()), total

    # =========================================================================
    # Create / update / delete
    # =========================================================================

    @staticmethod
    def _derive(expense: Expense, input_vat_given: bool, total_given: bool) -> None:
        expense.amount_excluding_vat = round_money(expense.amount_excluding_vat)
        expense.vat_rate = round_money(expense.vat_rate)
        if input_vat_given:
            expense.input_vat_amount = round_money(expense.input_vat_amount)
        else:
            expense.input_vat_amount = vat_amount(expense.amount_excluding_vat, expense.vat_rate)
        if total_given:
            expense.total_amount = round_money(expense.total_amount)
        else:
            expense.total_amount = expense.amount_excluding_vat + expense.input_vat_amount

    async def create(self, data: ExpenseIn, user_id: Optional[int] = None) -> Expense:
        expense = Expense(
            description=data.description.strip(),
            category=data.category,
            amount_excluding_vat=data.amount_excluding_vat,
            vat_rate=data.vat_rate if data.vat_rate is not None else settings.DEFAULT_VAT_RATE,
            input_vat_amount=data.input_vat_amount,
            total_amount=data.total_amount,
            expense_date=data.expense_date,
            receipt_file_path=data.receipt_file_path,
            vendor_name=data.vendor_name,
            vendor_tax_id=data.vendor_tax_id,
            notes=data.notes,
            created_by=user_id,
        )
        self._derive(expense, data.input_vat_amount is not None, data.total_amount is not None)
        self.db.add(expense)
        await self.db.flush()
        log.info("Expense recorded id=%s date=%s total=%s input_vat=%s", expense.id,
                 expense.expense_date, expense.total_amount, expense.input_vat_amount)
        return expense

    async def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = await self.get(expense_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No valid fields to update")

        for field in ("category", "receipt_file_path", "vendor_name", "vendor_tax_id", "notes"):
            if field in changes:
                setattr(expense, field, changes[field])
        if changes.get("description") is not None:
            expense.description = changes["description"].strip()
        for field in ("amount_excluding_vat", "vat_rate", "input_vat_amount", "total_amount", "expense_date"):
            if changes.get(field) is not None:
                setattr(expense, field, changes[field])

        # amounts not given explicitly follow a changed net amount or rate
        recalculated = any(changes.get(f) is not None for f in ("amount_excluding_vat", "vat_rate"))
        input_vat_given = changes.get("input_vat_amount") is not None or not recalculated
        total_given = changes.get("total_amount") is not None or not (
            recalculated or changes.get("input_vat_amount") is not None
        )
        self._derive(expense, input_vat_given, total_given)

        await self.db.flush()
        return expense

    async def delete(self, expense_id: int) -> None:
        expense = await self.get(expense_id)
        await self.db.delete(expense)
        await self.db.flush()
        log.info("Expense deleted id=%s", expense_id)

    # =========================================================================
    # Summary
    # =========================================================================

    async def summary(self, start_date: date, end_date: date) -> dict:
        """Totals for the range plus the same totals per category."""
        conditions = self._filters(start_date=start_date, end_date=end_date)
        columns = (
            func.count(Expense.id),
            func.sum(Expense.amount_excluding_vat),
            func.sum(Expense.input_vat_amount),
            func.sum(Expense.total_amount),
        )

        def _row(count, excluding, input_vat, total) -> dict:
            return {
                "count": count,
                "total_excluding_vat": round_money(excluding or ZERO),
                "total_input_vat": round_money(input_vat or ZERO),
                "total_amount": round_money(total or ZERO),
            }

        totals = (await self.db.execute(select(*columns).where(*conditions))).one()
        stmt = (
            select(Expense.category, *columns)
            .where(*conditions)
            .group_by(Expense.category)
            .order_by(Expense.category)
        )
        by_category = [
            {"category": row[0], **_row(*row[1:])}
            for row in (await self.db.execute(stmt)).all()
        ]
        return {"totals": _row(*totals), "by_category": by_category}
