# shop_hub/services/payments.py
"""
Payment Service - manual slip verification.

A payment attempt starts `pending` when a customer uploads a transfer slip
and is moved exactly once, by staff, to `verified` or `rejected`. A rejected
attempt leaves room for a new one on the same order.

Customers pay by bank transfer against a PromptPay QR code; the EMV payload
for an order is built here from the shop's PromptPay ID.
"""
from __future__ import annotations
import logging
import re
from decimal import Decimal
from typing import Optional, List, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.db_models import (
    Order, OrderStatus, OrderPaymentStatus, Payment, PaymentStatus, PaymentMethod,
)
from shop_hub.errors import ConfigurationError, ConflictError, NotFoundError, ValidationError
from shop_hub.services.orders import OrderService
from shop_hub.services.pricing import round_money
from shop_hub.settings import settings
from shop_hub.utils import utcnow, day_stamp, next_document_number

log = logging.getLogger(__name__)

# ============================================================================
# PromptPay
# ============================================================================

PROMPTPAY_AID = "A000000677010111"
THB_CURRENCY = "764"


def _tlv(tag: str, value: str) -> str:
    return f"{tag}{len(value):02d}{value}"


def crc16_ccitt(data: str) -> str:
    """CRC-16/CCITT-FALSE (poly 0x1021, init 0xFFFF) as four upper-case hex digits."""
    crc = 0xFFFF
    for byte in data.encode("ascii"):
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


def _promptpay_account(promptpay_id: str) -> str:
    """Merchant account sub-tag: 01 for a mobile number, 02 for a national or tax ID."""
    digits = re.sub(r"\D", "", promptpay_id or "")
    if len(digits) == 13:
        return _tlv("02", digits)
    if len(digits) == 10 and digits.startswith("0"):
        return _tlv("01", "0066" + digits[1:])
    if len(digits) == 11 and digits.startswith("66"):
        return _tlv("01", digits.zfill(13))
    raise ValidationError(
        "PromptPay ID must be a mobile number or a 13-digit tax ID",
        code="INVALID_PROMPTPAY_ID",
    )


def promptpay_payload(promptpay_id: str, amount: Optional[Decimal] = None) -> str:
    """
    EMV QR payload for a PromptPay transfer.

    With an amount the code is single-use (point of initiation 12) and the
    banking app pre-fills it; without one it is a reusable static code (11).
    """
    merchant = _tlv("00", PROMPTPAY_AID) + _promptpay_account(promptpay_id)
    payload = _tlv("00", "01") + _tlv("01", "12" if amount else "11") + _tlv("29", merchant)
    payload += _tlv("53", THB_CURRENCY)
    if amount:
        payload += _tlv("54", f"{round_money(amount):.2f}")
    payload += _tlv("58", "TH") + "6304"
    return payload + crc16_ccitt(payload)


def format_promptpay_id(promptpay_id: str) -> str:
    digits = re.sub(r"\D", "", promptpay_id)
    if len(digits) == 10:
        return f"{digits[:3]}-{digits[3:6]}-{digits[6:]}"
    if len(digits) == 11:
        return f"+{digits[:2]} {digits[2:4]}-{digits[4:7]}-{digits[7:]}"
    return promptpay_id


class PaymentService:
    """Service for payment attempts and their verification."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.orders = OrderService(db)

    # =========================================================================
    # Lookup
    # =========================================================================

    async def get(self, payment_id: int) -> Payment:
        payment = await self.db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment not found: {payment_id}", code="PAYMENT_NOT_FOUND")
        return payment

    async def latest_for_order(self, order_id: int) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.order_id == order_id)
            .order_by(Payment.id.desc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def history(self, order_id: int) -> List[Payment]:
        await self.orders.get(order_id)
        stmt = select(Payment).where(Payment.order_id == order_id).order_by(Payment.id)
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def list(
        self,
        status: Optional[PaymentStatus] = None,
        order_id: Optional[int] = None,
        payment_method: Optional[PaymentMethod] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Payment], int]:
        conditions = []
        if status is not None:
            conditions.append(Payment.status == status)
        if order_id is not None:
            conditions.append(Payment.order_id == order_id)
        if payment_method is not None:
            conditions.append(Payment.payment_method == payment_method)

        total = (await self.db.execute(select(func.count(Payment.id)).where(*conditions))).scalar_one()
        stmt = (
            select(Payment)
            .where(*conditions)
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars()), total

    async def pending_queue(self) -> List[Payment]:
        """Attempts waiting for staff, oldest first."""
        stmt = (
            select(Payment)
            .where(Payment.status == PaymentStatus.pending)
            .order_by(Payment.created_at.asc(), Payment.id.asc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    # =========================================================================
    # Creation
    # =========================================================================

    async def _payable_order(self, order_id: int) -> Order:
        order = await self.orders.get(order_id)
        if order.status == OrderStatus.cancelled:
            raise ValidationError(f"Order {order.order_number} is cancelled", code="ORDER_CANCELLED")
        return order

    @staticmethod
    def _reopen(order: Order) -> None:
        # a new attempt after a rejection puts the order back in the queue
        if order.payment_status == OrderPaymentStatus.failed:
            order.payment_status = OrderPaymentStatus.pending

    async def upload_slip(
        self,
        order_id: int,
        slip_image_path: str,
        notes: Optional[str] = None,
        payment_method: PaymentMethod = PaymentMethod.bank_transfer,
    ) -> Payment:
        """
        Attach a transfer slip to an order.

        pending latest attempt  -> its slip is replaced
        rejected / no attempt   -> a new pending attempt
        verified latest attempt -> PAYMENT_ALREADY_VERIFIED
        """
        order = await self._payable_order(order_id)
        latest = await self.latest_for_order(order.id)

        if latest is not None and latest.status == PaymentStatus.verified:
            raise ConflictError("Payment for this order is already verified", code="PAYMENT_ALREADY_VERIFIED")

        if latest is not None and latest.status == PaymentStatus.pending:
            latest.slip_image_path = slip_image_path
            if notes is not None:
                latest.notes = notes
            await self.db.flush()
            log.info("Slip replaced payment=%s order=%s", latest.id, order.order_number)
            return latest

        payment = Payment(
            order_id=order.id,
            payment_method=payment_method,
            amount=order.total_amount,
            slip_image_path=slip_image_path,
            status=PaymentStatus.pending,
            notes=notes,
        )
        self.db.add(payment)
        self._reopen(order)
        await self.db.flush()
        log.info("Slip uploaded payment=%s order=%s amount=%s", payment.id, order.order_number, payment.amount)
        return payment

    async def create_manual(
        self,
        order_id: int,
        payment_method: PaymentMethod = PaymentMethod.cash,
        amount: Optional[Decimal] = None,
        notes: Optional[str] = None,
    ) -> Payment:
        """Staff-recorded attempt without a slip; one open attempt per order."""
        order = await self._payable_order(order_id)
        latest = await self.latest_for_order(order.id)
        if latest is not None and latest.status != PaymentStatus.rejected:
            raise ConflictError(
                f"Order {order.order_number} already has a {latest.status.value} payment",
                code="PAYMENT_EXISTS",
            )

        payment = Payment(
            order_id=order.id,
            payment_method=payment_method,
            amount=round_money(amount) if amount is not None else order.total_amount,
            status=PaymentStatus.pending,
            notes=notes,
        )
        self.db.add(payment)
        self._reopen(order)
        await self.db.flush()
        log.info("Manual payment created payment=%s order=%s method=%s", payment.id,
                 order.order_number, payment_method.value)
        return payment

    async def promptpay_for_order(self, order_id: int) -> dict:
        """What the customer needs to pay an order by transfer: QR payload and bank account."""
        order = await self._payable_order(order_id)
        if order.payment_status == OrderPaymentStatus.paid:
            raise ConflictError("Payment for this order is already verified", code="PAYMENT_ALREADY_VERIFIED")
        if not settings.PROMPTPAY_ID:
            raise ConfigurationError("PromptPay is not configured", code="PROMPTPAY_NOT_CONFIGURED")
        try:
            payload = promptpay_payload(settings.PROMPTPAY_ID, order.total_amount)
        except ValidationError as e:
            raise ConfigurationError("Invalid PromptPay ID configuration", code="INVALID_PROMPTPAY_ID") from e

        return {
            "order_number": order.order_number,
            "amount": order.total_amount,
            "promptpay_id": format_promptpay_id(settings.PROMPTPAY_ID),
            "payload": payload,
            "bank_account": {
                "bank_name": settings.BANK_NAME,
                "account_number": settings.BANK_ACCOUNT_NUMBER,
                "account_name": settings.BANK_ACCOUNT_NAME,
            },
        }

    # =========================================================================
    # Verification
    # =========================================================================

    async def next_receipt_number(self) -> str:
        prefix = f"RCP-{day_stamp()}-"
        stmt = select(func.max(Payment.receipt_number)).where(Payment.receipt_number.like(f"{prefix}%"))
        last = (await self.db.execute(stmt)).scalar_one_or_none()
        return next_document_number(prefix, last)

    @staticmethod
    def _require_pending(payment: Payment, target: PaymentStatus) -> None:
        if payment.status != PaymentStatus.pending:
            raise ValidationError(
                f"Cannot change payment from {payment.status.value} to {target.value}",
                code="INVALID_PAYMENT_TRANSITION",
                details={"current": payment.status.value},
            )

    async def verify(self, payment_id: int, staff_user_id: Optional[int] = None, notes: Optional[str] = None) -> Payment:
        payment = await self.get(payment_id)
        self._require_pending(payment, PaymentStatus.verified)
        order = await self.orders.get(payment.order_id)
        if order.status == OrderStatus.cancelled:
            raise ValidationError(f"Order {order.order_number} is cancelled", code="ORDER_CANCELLED")

        payment.status = PaymentStatus.verified
        payment.verified_by = staff_user_id
        payment.verified_at = utcnow()
        payment.receipt_number = await self.next_receipt_number()
        if notes is not None:
            payment.notes = notes

        order.payment_status = OrderPaymentStatus.paid
        if order.status == OrderStatus.pending:
            order.status = OrderStatus.paid

        await self.db.flush()
        log.info("Payment verified payment=%s order=%s receipt=%s by=%s", payment.id,
                 order.order_number, payment.receipt_number, staff_user_id)
        return payment

    async def reject(self, payment_id: int, reason: str, staff_user_id: Optional[int] = None) -> Payment:
        if not (reason or "").strip():
            raise ValidationError("Rejection reason is required")

        payment = await self.get(payment_id)
        self._require_pending(payment, PaymentStatus.rejected)
        order = await self.orders.get(payment.order_id)

        payment.status = PaymentStatus.rejected
        payment.rejection_reason = reason.strip()
        payment.verified_by = staff_user_id
        payment.verified_at = utcnow()

        if order.status != OrderStatus.cancelled:
            order.payment_status = OrderPaymentStatus.failed

        await self.db.flush()
        log.info("Payment rejected payment=%s order=%s by=%s reason=%s", payment.id,
                 order.order_number, staff_user_id, payment.rejection_reason)
        return payment

    async def confirm(
        self,
        payment_id: int,
        verified: bool,
        staff_user_id: Optional[int] = None,
        rejection_reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Payment:
        """Single staff decision endpoint: verify, or reject with a reason."""
        if verified:
            return await self.verify(payment_id, staff_user_id, notes)
        return await self.reject(payment_id, rejection_reason or "", staff_user_id)

    async def delete(self, payment_id: int) -> None:
        payment = await self.get(payment_id)
        await self.db.delete(payment)
        await self.db.flush()
        log.info("Payment deleted payment=%s order=%s", payment_id, payment.order_id)
