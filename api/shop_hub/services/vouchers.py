# shop_hub/services/vouchers.py
"""
Voucher Service.

Handles:
- Voucher administration (create / list / get / update / delete)
- Validation against a subtotal and a customer, one error code per rule
- Discount calculation
- Usage recording with a conditional usage_count increment
"""
from __future__ import annotations
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.db_models import (
    Cart, Voucher, VoucherUsage, VoucherStatus, DiscountType,
)
from shop_hub.errors import ConflictError, NotFoundError, ValidationError, VoucherError
from shop_hub.models import VoucherIn, VoucherUpdate
from shop_hub.services.pricing import compute_discount, round_money
from shop_hub.utils import utcnow, as_utc

log = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class VoucherService:
    """Service for discount vouchers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Administration
    # =========================================================================

    @staticmethod
    def _check_invariants(
        discount_type: DiscountType,
        discount_value: Decimal,
        start_date: datetime,
        end_date: datetime,
    ) -> None:
        if DiscountType(discount_type) == DiscountType.percentage and discount_value > 100:
            raise ValidationError("Percentage discount cannot exceed 100")
        if as_utc(start_date) >= as_utc(end_date):
            raise ValidationError("Voucher start_date must be before end_date")

    async def create(self, data: VoucherIn) -> Voucher:
        code = normalize_code(data.code)
        self._check_invariants(data.discount_type, data.discount_value, data.start_date, data.end_date)
        if await self.find_by_code(code) is not None:
            raise ConflictError(f"Voucher code already exists: {code}", code="DUPLICATE_VOUCHER")

        voucher = Voucher(
            code=code,
            name=data.name,
            description=data.description,
            discount_type=data.discount_type,
            discount_value=round_money(data.discount_value),
            minimum_order_amount=round_money(data.minimum_order_amount),
            max_discount_amount=(
                round_money(data.max_discount_amount) if data.max_discount_amount is not None else None
            ),
            usage_limit=data.usage_limit,
            usage_limit_per_customer=data.usage_limit_per_customer,
            usage_count=0,
            start_date=as_utc(data.start_date),
            end_date=as_utc(data.end_date),
            status=data.status,
        )
        self.db.add(voucher)
        await self.db.flush()
        log.info("Voucher created id=%s code=%s type=%s value=%s", voucher.id, voucher.code,
                 voucher.discount_type.value, voucher.discount_value)
        return voucher

    async def list(self, active_only: bool = False) -> List[Voucher]:
        stmt = select(Voucher).order_by(Voucher.created_at.desc(), Voucher.id.desc())
        if active_only:
            now = utcnow()
            stmt = stmt.where(
                Voucher.status == VoucherStatus.active,
                Voucher.start_date <= now,
                Voucher.end_date >= now,
            )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def get(self, voucher_id: int) -> Voucher:
        voucher = await self.db.get(Voucher, voucher_id)
        if voucher is None:
            raise NotFoundError(f"Voucher not found: {voucher_id}", code="VOUCHER_NOT_FOUND")
        return voucher

    async def find_by_code(self, code: str) -> Optional[Voucher]:
        stmt = select(Voucher).where(Voucher.code == normalize_code(code))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def update(self, voucher_id: int, data: VoucherUpdate) -> Voucher:
        voucher = await self.get(voucher_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No fields to update")

        for field in ("description", "max_discount_amount", "usage_limit", "usage_limit_per_customer"):
            if field in changes:
                setattr(voucher, field, changes[field])
        for field in ("name", "discount_type", "discount_value", "minimum_order_amount", "status"):
            if changes.get(field) is not None:
                setattr(voucher, field, changes[field])
        for field in ("start_date", "end_date"):
            if changes.get(field) is not None:
                setattr(voucher, field, as_utc(changes[field]))

        self._check_invariants(voucher.discount_type, voucher.discount_value,
                               voucher.start_date, voucher.end_date)
        await self.db.flush()
        return voucher

    async def delete(self, voucher_id: int) -> None:
        voucher = await self.get(voucher_id)
        await self.db.execute(
            update(Cart).where(Cart.voucher_id == voucher.id).values(voucher_id=None)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.execute(delete(VoucherUsage).where(VoucherUsage.voucher_id == voucher.id))
        await self.db.delete(voucher)
        await self.db.flush()
        log.info("Voucher deleted id=%s code=%s", voucher_id, voucher.code)

    async def usage_history(self, voucher_id: int) -> List[VoucherUsage]:
        await self.get(voucher_id)
        stmt = (
            select(VoucherUsage)
            .where(VoucherUsage.voucher_id == voucher_id)
            .order_by(VoucherUsage.used_at.desc(), VoucherUsage.id.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    # =========================================================================
    # Validation
    # =========================================================================

    async def user_usage_count(self, voucher_id: int, user_id: int) -> int:
        stmt = select(func.count(VoucherUsage.id)).where(
            VoucherUsage.voucher_id == voucher_id,
            VoucherUsage.user_id == user_id,
        )
        return (await self.db.execute(stmt)).scalar_one()

    async def check(self, voucher: Voucher, subtotal: Decimal, user_id: Optional[int] = None) -> Voucher:
        """Raise VoucherError with the code of the first rule `voucher` fails."""
        if voucher.status != VoucherStatus.active:
            raise VoucherError("Voucher is not active", code="VOUCHER_INACTIVE")

        now = utcnow()
        if now < as_utc(voucher.start_date):
            raise VoucherError("Voucher is not yet active", code="VOUCHER_NOT_YET_ACTIVE")
        if now > as_utc(voucher.end_date):
            raise VoucherError("Voucher has expired", code="VOUCHER_EXPIRED")

        if voucher.usage_limit is not None and voucher.usage_count >= voucher.usage_limit:
            raise VoucherError("Voucher usage limit reached", code="VOUCHER_USAGE_LIMIT_REACHED")

        # guests have no usage history to count against
        if user_id is not None and voucher.usage_limit_per_customer:
            used = await self.user_usage_count(voucher.id, user_id)
            if used >= voucher.usage_limit_per_customer:
                raise VoucherError(
                    "You have reached the usage limit for this voucher",
                    code="VOUCHER_USER_LIMIT_REACHED",
                )

        if round_money(subtotal) < voucher.minimum_order_amount:
            raise VoucherError(
                f"Minimum order amount of {voucher.minimum_order_amount} required",
                code="VOUCHER_MINIMUM_NOT_MET",
                details={"minimum_order_amount": str(voucher.minimum_order_amount)},
            )
        return voucher

    async def validate(self, code: str, subtotal: Decimal, user_id: Optional[int] = None) -> Voucher:
        voucher = await self.find_by_code(code)
        if voucher is None:
            raise VoucherError("Invalid voucher code", code="VOUCHER_NOT_FOUND")
        return await self.check(voucher, subtotal, user_id)

    @staticmethod
    def discount_for(voucher: Voucher, subtotal: Decimal) -> Decimal:
        return compute_discount(
            subtotal,
            voucher.discount_type,
            voucher.discount_value,
            voucher.max_discount_amount,
        )

    # =========================================================================
    # Usage
    # =========================================================================

    async def record_usage(
        self,
        voucher: Voucher,
        user_id: Optional[int] = None,
        order_id: Optional[int] = None,
    ) -> VoucherUsage:
        """
        Count one use of `voucher`.

        The increment is guarded by usage_limit inside the UPDATE itself, so the
        last remaining use can only be taken once.
        """
        stmt = (
            update(Voucher)
            .where(
                Voucher.id == voucher.id,
                or_(Voucher.usage_limit.is_(None), Voucher.usage_count < Voucher.usage_limit),
            )
            .values(usage_count=Voucher.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            raise VoucherError("Voucher usage limit reached", code="VOUCHER_USAGE_LIMIT_REACHED")

        usage = VoucherUsage(voucher_id=voucher.id, user_id=user_id, order_id=order_id)
        self.db.add(usage)
        await self.db.flush()
        await self.db.refresh(voucher)
        log.info("Voucher used code=%s user=%s order=%s count=%s", voucher.code, user_id,
                 order_id, voucher.usage_count)
        return usage
