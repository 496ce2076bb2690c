# shop_hub/routers/financial.py
"""
Financial Router - expenses and the revenue, VAT, profit and tax reports (staff).

Dates are inclusive calendar days in UTC.
"""
from __future__ import annotations
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.database import get_session
from shop_hub.identity import Identity, require_staff, require_admin
from shop_hub.models import ExpenseIn, ExpenseUpdate, ExpenseOut, ExpenseListOut, Period
from shop_hub.services.expenses import ExpenseService
from shop_hub.services.reports import FinancialReportService
from shop_hub.utils import utcnow

router = APIRouter(prefix="/api/financial", tags=["Financial"])


def _range(start_date: Optional[date], end_date: Optional[date]):
    """Defaults to the current month up to today."""
    today = utcnow().date()
    start_date = start_date or today.replace(day=1)
    end_date = end_date or today
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    end = datetime.combine(end_date, time.max, tzinfo=timezone.utc)
    return start, end


def _wrap(start: datetime, end: datetime, data: Any) -> Dict[str, Any]:
    return {
        "start_date": start.date().isoformat(),
        "end_date": end.date().isoformat(),
        "data": data,
    }


@router.get("/revenue/summary")
async def revenue_summary(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    start, end = _range(start_date, end_date)
    return _wrap(start, end, await FinancialReportService(db).revenue_summary(start, end))


@router.get("/revenue/by-period")
async def revenue_by_period(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    group_by: Period = Query("month"),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    start, end = _range(start_date, end_date)
    rows = await FinancialReportService(db).revenue_by_period(start, end, group_by)
    return _wrap(start, end, rows)


@router.get("/revenue/top-products")
async def top_products(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    start, end = _range(start_date, end_date)
    return _wrap(start, end, await FinancialReportService(db).top_products(start, end, limit))


@router.get("/profit/by-product")
async def profit_by_product(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    start, end = _range(start_date, end_date)
    return _wrap(start, end, await FinancialReportService(db).profit_by_product(start, end))


@router.get("/tax/vat-summary")
async def vat_summary(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    start, end = _range(start_date, end_date)
    return _wrap(start, end, await FinancialReportService(db).vat_summary(start, end))


@router.get("/tax/report")
async def tax_report(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    """Output VAT from sales, input VAT from expenses and the net VAT payable."""
    start, end = _range(start_date, end_date)
    return _wrap(start, end, await FinancialReportService(db).tax_report(start, end))


@router.get("/report")
async def financial_report(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    start, end = _range(start_date, end_date)
    return _wrap(start, end, await FinancialReportService(db).financial_report(start, end))


# ============================================================================
# Expenses
# ============================================================================

@router.post("/expenses", response_model=ExpenseOut, status_code=201)
async def create_expense(
    request: ExpenseIn,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    expense = await ExpenseService(db).create(request, user_id=identity.user_id)
    return ExpenseOut.model_validate(expense)


@router.get("/expenses", response_model=ExpenseListOut)
async def list_expenses(
    category: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    search: Optional[str] = Query(None),
    sort_by: str = Query("expense_date"),
    sort_order: str = Query("desc", pattern="^(asc|desc|ASC|DESC)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    expenses, total = await ExpenseService(db).list(
        category=category,
        start_date=start_date,
        end_date=end_date,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return ExpenseListOut(
        items=[ExpenseOut.model_validate(e) for e in expenses],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/expenses/summary")
async def expense_summary(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    start, end = _range(start_date, end_date)
    return _wrap(start, end, await ExpenseService(db).summary(start.date(), end.date()))


@router.get("/expenses/{expense_id}", response_model=ExpenseOut)
async def get_expense(
    expense_id: int,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    return ExpenseOut.model_validate(await ExpenseService(db).get(expense_id))


@router.put("/expenses/{expense_id}", response_model=ExpenseOut)
async def update_expense(
    expense_id: int,
    request: ExpenseUpdate,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    return ExpenseOut.model_validate(await ExpenseService(db).update(expense_id, request))


@router.delete("/expenses/{expense_id}", status_code=204)
async def delete_expense(
    expense_id: int,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    await ExpenseService(db).delete(expense_id)
