# shop_hub/routers/payments.py
"""
Payments Router - PromptPay QR, slip upload and staff verification.

The slip itself is stored elsewhere; this API only records its path/URL.
"""
from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.database import get_session
from shop_hub.db_models import PaymentStatus, PaymentMethod
from shop_hub.errors import NotFoundError
from shop_hub.identity import Identity, require_staff, require_admin
from shop_hub.models import (
    SlipUploadIn, ManualPaymentIn, PaymentRejectIn, PaymentConfirmIn,
    PaymentOut, PaymentListOut, PromptPayOut,
)
from shop_hub.services.payments import PaymentService

router = APIRouter(prefix="/api/payments", tags=["Payments"])


# ============================================================================
# Customer
# ============================================================================

@router.post("/upload-slip", response_model=PaymentOut, status_code=201)
async def upload_slip(request: SlipUploadIn, db: AsyncSession = Depends(get_session)):
    """
    Attach a transfer slip to an order.

    Replaces the slip of a pending attempt, or opens a new attempt when the
    last one was rejected.
    """
    payment = await PaymentService(db).upload_slip(
        request.order_id,
        request.slip_image_path,
        notes=request.notes,
        payment_method=request.payment_method,
    )
    return PaymentOut.model_validate(payment)


@router.get("/order/{order_id}", response_model=PaymentOut)
async def get_payment_by_order(order_id: int, db: AsyncSession = Depends(get_session)):
    """Latest payment attempt of an order."""
    service = PaymentService(db)
    await service.orders.get(order_id)
    payment = await service.latest_for_order(order_id)
    if payment is None:
        raise NotFoundError(f"No payment for order {order_id}", code="PAYMENT_NOT_FOUND")
    return PaymentOut.model_validate(payment)


@router.get("/promptpay/{order_id}", response_model=PromptPayOut)
async def promptpay_qr(order_id: int, db: AsyncSession = Depends(get_session)):
    """PromptPay QR payload for the order total, plus the shop's bank account."""
    return PromptPayOut(**await PaymentService(db).promptpay_for_order(order_id))


# ============================================================================
# Staff
# ============================================================================

@router.get("", response_model=PaymentListOut)
async def list_payments(
    status: Optional[PaymentStatus] = Query(None),
    order_id: Optional[int] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    payments, total = await PaymentService(db).list(
        status=status,
        order_id=order_id,
        payment_method=payment_method,
        page=page,
        limit=limit,
    )
    return PaymentListOut(
        items=[PaymentOut.model_validate(p) for p in payments],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/pending", response_model=List[PaymentOut])
async def pending_payments(
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    """Verification queue, oldest first."""
    return [PaymentOut.model_validate(p) for p in await PaymentService(db).pending_queue()]


@router.get("/order/{order_id}/history", response_model=List[PaymentOut])
async def payment_history(
    order_id: int,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    return [PaymentOut.model_validate(p) for p in await PaymentService(db).history(order_id)]


@router.post("", response_model=PaymentOut, status_code=201)
async def create_payment(
    request: ManualPaymentIn,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    """Record a payment without a slip (cash, counter transfer...)."""
    payment = await PaymentService(db).create_manual(
        request.order_id,
        payment_method=request.payment_method,
        amount=request.amount,
        notes=request.notes,
    )
    return PaymentOut.model_validate(payment)


@router.get("/{payment_id}", response_model=PaymentOut)
async def get_payment(
    payment_id: int,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    return PaymentOut.model_validate(await PaymentService(db).get(payment_id))


@router.post("/{payment_id}/verify", response_model=PaymentOut)
async def verify_payment(
    payment_id: int,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    payment = await PaymentService(db).verify(payment_id, staff_user_id=identity.user_id)
    return PaymentOut.model_validate(payment)


@router.post("/{payment_id}/reject", response_model=PaymentOut)
async def reject_payment(
    payment_id: int,
    request: PaymentRejectIn,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    payment = await PaymentService(db).reject(payment_id, request.rejection_reason, staff_user_id=identity.user_id)
    return PaymentOut.model_validate(payment)


@router.post("/{payment_id}/confirm", response_model=PaymentOut)
async def confirm_payment(
    payment_id: int,
    request: PaymentConfirmIn,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    """{"verified": true} verifies, {"verified": false, "rejection_reason": ...} rejects."""
    payment = await PaymentService(db).confirm(
        payment_id,
        request.verified,
        staff_user_id=identity.user_id,
        rejection_reason=request.rejection_reason,
        notes=request.notes,
    )
    return PaymentOut.model_validate(payment)


@router.delete("/{payment_id}", status_code=204)
async def delete_payment(
    payment_id: int,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    await PaymentService(db).delete(payment_id)
