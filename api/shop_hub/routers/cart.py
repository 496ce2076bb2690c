# shop_hub/routers/cart.py
"""
Cart Router.

The cart is picked by the caller's headers: X-User-Id when present,
otherwise X-Session-Id. Every response is a freshly recomputed summary.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.database import get_session
from shop_hub.errors import ValidationError
from shop_hub.identity import Identity, require_owner, require_user
from shop_hub.models import CartItemIn, CartItemUpdate, CartOut, VoucherCodeIn, VoucherCheckOut
from shop_hub.services.cart import CartService

router = APIRouter(prefix="/api/cart", tags=["Cart"])


async def _summary(service: CartService, cart, identity: Identity) -> CartOut:
    return CartOut(**await service.summarize(cart, identity.user_id))


async def _cart_for(service: CartService, identity: Identity):
    return await service.get_or_create(user_id=identity.user_id, session_id=identity.session_id)


@router.get("", response_model=CartOut)
async def get_cart(
    identity: Identity = Depends(require_owner),
    db: AsyncSession = Depends(get_session),
):
    service = CartService(db)
    cart = await _cart_for(service, identity)
    return await _summary(service, cart, identity)


@router.post("/items", response_model=CartOut)
async def add_item(
    request: CartItemIn,
    identity: Identity = Depends(require_owner),
    db: AsyncSession = Depends(get_session),
):
    service = CartService(db)
    cart = await service.add_item(await _cart_for(service, identity), request.product_id, request.quantity)
    return await _summary(service, cart, identity)


@router.put("/items/{item_id}", response_model=CartOut)
async def update_item(
    item_id: int,
    request: CartItemUpdate,
    identity: Identity = Depends(require_owner),
    db: AsyncSession = Depends(get_session),
):
    """Set a line's quantity; 0 or less removes the line."""
    service = CartService(db)
    cart = await service.update_item(await _cart_for(service, identity), item_id, request.quantity)
    return await _summary(service, cart, identity)


@router.delete("/items/{item_id}", response_model=CartOut)
async def remove_item(
    item_id: int,
    identity: Identity = Depends(require_owner),
    db: AsyncSession = Depends(get_session),
):
    service = CartService(db)
    cart = await service.remove_item(await _cart_for(service, identity), item_id)
    return await _summary(service, cart, identity)


@router.delete("", response_model=CartOut)
async def clear_cart(
    identity: Identity = Depends(require_owner),
    db: AsyncSession = Depends(get_session),
):
    service = CartService(db)
    cart = await service.clear(await _cart_for(service, identity))
    return await _summary(service, cart, identity)


# ============================================================================
# Voucher
# ============================================================================

@router.post("/voucher", response_model=CartOut)
async def apply_voucher(
    request: VoucherCodeIn,
    identity: Identity = Depends(require_owner),
    db: AsyncSession = Depends(get_session),
):
    service = CartService(db)
    cart = await service.apply_voucher(await _cart_for(service, identity), request.code, identity.user_id)
    return await _summary(service, cart, identity)


@router.delete("/voucher", response_model=CartOut)
async def remove_voucher(
    identity: Identity = Depends(require_owner),
    db: AsyncSession = Depends(get_session),
):
    service = CartService(db)
    cart = await service.remove_voucher(await _cart_for(service, identity))
    return await _summary(service, cart, identity)


@router.post("/voucher/validate", response_model=VoucherCheckOut)
async def validate_voucher(
    request: VoucherCodeIn,
    identity: Identity = Depends(require_owner),
    db: AsyncSession = Depends(get_session),
):
    """Check a code against the current cart without applying it."""
    service = CartService(db)
    result = await service.validate_voucher(await _cart_for(service, identity), request.code, identity.user_id)
    return VoucherCheckOut(**result)


# ============================================================================
# Merge
# ============================================================================

@router.post("/merge", response_model=CartOut)
async def merge_cart(
    identity: Identity = Depends(require_user),
    db: AsyncSession = Depends(get_session),
):
    """Fold the guest cart of X-Session-Id into the user's cart."""
    if identity.session_id is None:
        raise ValidationError("X-Session-Id header is required to merge a guest cart")
    service = CartService(db)
    cart = await service.merge_guest_cart(identity.session_id, identity.user_id)
    return await _summary(service, cart, identity)
