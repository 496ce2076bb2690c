# shop_hub/routers/orders.py
"""
Orders Router.

Checkout is open to users and guest sessions; guests find their orders again
through /guest-lookup. Listing and status changes are staff-only, a customer
only ever sees their own orders.
"""
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.database import get_session
from shop_hub.db_models import Order, OrderStatus, OrderPaymentStatus
from shop_hub.errors import ForbiddenError
from shop_hub.identity import Identity, require_owner, require_user, require_staff
from shop_hub.models import (
    CheckoutIn, DirectOrderIn, OrderOut, OrderListOut,
    OrderStatusIn, OrderPaymentStatusIn, TrackingIn, GuestLookupIn,
)
from shop_hub.services.cart import CartService
from shop_hub.services.orders import OrderService

router = APIRouter(prefix="/api/orders", tags=["Orders"])


def _check_access(order: Order, identity: Identity) -> None:
    if identity.is_staff:
        return
    if order.user_id is None or order.user_id != identity.user_id:
        raise ForbiddenError("You do not have access to this order")


# ============================================================================
# Placement
# ============================================================================

@router.post("", response_model=OrderOut, status_code=201)
async def create_order_from_cart(
    request: CheckoutIn,
    identity: Identity = Depends(require_owner),
    db: AsyncSession = Depends(get_session),
):
    """
    Checkout the caller's cart.

    Stock is checked and decremented here, the voucher usage recorded and the
    cart cleared; any failure rolls the whole placement back.
    """
    cart = await CartService(db).get_or_create(user_id=identity.user_id, session_id=identity.session_id)
    order = await OrderService(db).create_from_cart(cart, request, user_id=identity.user_id)
    return OrderOut.model_validate(order)


@router.post("/direct", response_model=OrderOut, status_code=201)
async def create_order_direct(
    request: DirectOrderIn,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    """Staff order from an item list (phone / marketplace / walk-in)."""
    order = await OrderService(db).create_direct(request, staff_user_id=identity.user_id)
    return OrderOut.model_validate(order)


@router.post("/guest-lookup", response_model=OrderOut)
async def guest_order_lookup(request: GuestLookupIn, db: AsyncSession = Depends(get_session)):
    order = await OrderService(db).find_guest_order(request.order_number, request.email, request.phone)
    return OrderOut.model_validate(order)


# ============================================================================
# Reading
# ============================================================================

@router.get("", response_model=OrderListOut)
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    payment_status: Optional[OrderPaymentStatus] = Query(None),
    source_platform: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc|ASC|DESC)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    identity: Identity = Depends(require_user),
    db: AsyncSession = Depends(get_session),
):
    """Staff see every order; customers are limited to their own."""
    if not identity.is_staff:
        user_id = identity.user_id
    orders, total = await OrderService(db).list(
        status=status,
        payment_status=payment_status,
        source_platform=source_platform,
        user_id=user_id,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return OrderListOut(
        items=[OrderOut.model_validate(o) for o in orders],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/number/{order_number}", response_model=OrderOut)
async def get_order_by_number(
    order_number: str,
    identity: Identity = Depends(require_user),
    db: AsyncSession = Depends(get_session),
):
    order = await OrderService(db).get_by_number(order_number)
    _check_access(order, identity)
    return OrderOut.model_validate(order)


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: int,
    identity: Identity = Depends(require_user),
    db: AsyncSession = Depends(get_session),
):
    order = await OrderService(db).get(order_id)
    _check_access(order, identity)
    return OrderOut.model_validate(order)


# ============================================================================
# Status
# ============================================================================

@router.put("/{order_id}/status", response_model=OrderOut)
async def update_order_status(
    order_id: int,
    request: OrderStatusIn,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    """Advance fulfillment one step (pending > paid > packing > packed > shipped > delivered)."""
    service = OrderService(db)
    await service.update_status(order_id, request.status, user_id=identity.user_id)
    return OrderOut.model_validate(await service.get(order_id))


@router.put("/{order_id}/payment-status", response_model=OrderOut)
async def update_payment_status(
    order_id: int,
    request: OrderPaymentStatusIn,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    service = OrderService(db)
    await service.update_payment_status(order_id, request.payment_status)
    return OrderOut.model_validate(await service.get(order_id))


@router.put("/{order_id}/tracking", response_model=OrderOut)
async def update_tracking_number(
    order_id: int,
    request: TrackingIn,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    service = OrderService(db)
    await service.set_tracking_number(order_id, request.tracking_number)
    return OrderOut.model_validate(await service.get(order_id))


@router.post("/{order_id}/cancel", response_model=OrderOut)
async def cancel_order(
    order_id: int,
    identity: Identity = Depends(require_user),
    db: AsyncSession = Depends(get_session),
):
    """Staff can cancel any pending/paid order, a customer only their own pending one."""
    service = OrderService(db)
    order = await service.get(order_id)
    _check_access(order, identity)
    if not identity.is_staff and order.status != OrderStatus.pending:
        raise ForbiddenError("Only pending orders can be cancelled by the customer")
    await service.cancel(order_id, user_id=identity.user_id)
    return OrderOut.model_validate(await service.get(order_id))
