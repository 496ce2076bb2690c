# shop_hub/services/cart.py
"""
Cart Service.

A cart belongs to a registered user or to a guest session, never both.
Totals are never stored: every summary prices the current lines at the
current product prices and re-checks the attached voucher.
"""
from __future__ import annotations
import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shop_hub.db_models import Cart, CartItem, Product, ProductStatus
from shop_hub.errors import (
    NotFoundError, ValidationError, VoucherError, InsufficientStockError,
)
from shop_hub.services.pricing import PricedLine, compute_totals, subtotal_of, ZERO
from shop_hub.services.vouchers import VoucherService

log = logging.getLogger(__name__)


class CartService:
    """Service for shopping carts."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.vouchers = VoucherService(db)

    # =========================================================================
    # Loading
    # =========================================================================

    @staticmethod
    def _cart_query():
        return select(Cart).options(
            selectinload(Cart.items).selectinload(CartItem.product),
            selectinload(Cart.voucher),
        )

    async def _find(self, *conditions) -> Optional[Cart]:
        stmt = self._cart_query().where(*conditions).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def reload(self, cart: Cart) -> Cart:
        return await self._find(Cart.id == cart.id)

    async def find(self, user_id: Optional[int] = None, session_id: Optional[str] = None) -> Optional[Cart]:
        if user_id is not None:
            return await self._find(Cart.user_id == user_id)
        if session_id:
            return await self._find(Cart.session_id == session_id)
        return None

    async def get_or_create(self, user_id: Optional[int] = None, session_id: Optional[str] = None) -> Cart:
        """The user's cart when `user_id` is given, else the guest session's cart."""
        if user_id is None and not session_id:
            raise ValidationError("Either user id or session id is required", code="IDENTITY_REQUIRED")

        cart = await self.find(user_id, session_id)
        if cart is not None:
            return cart

        if user_id is not None:
            cart = Cart(user_id=user_id)
        else:
            cart = Cart(session_id=session_id)
        self.db.add(cart)
        await self.db.flush()
        return await self.reload(cart)

    # =========================================================================
    # Pricing
    # =========================================================================

    @staticmethod
    def priced_lines(cart: Cart) -> List[PricedLine]:
        return [PricedLine.from_product(item.product, item.quantity) for item in cart.items]

    async def summarize(self, cart: Cart, user_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Recompute the cart from scratch.

        A voucher that no longer passes validation is detached here and the
        discount falls back to zero.
        """
        lines = self.priced_lines(cart)
        subtotal = subtotal_of(lines)

        discount = ZERO
        if cart.voucher is not None:
            try:
                await self.vouchers.check(cart.voucher, subtotal, user_id if user_id is not None else cart.user_id)
            except VoucherError as e:
                log.info("Voucher %s detached from cart %s: %s", cart.voucher.code, cart.id, e.code)
                cart.voucher = None
                await self.db.flush()
            else:
                discount = self.vouchers.discount_for(cart.voucher, subtotal)

        totals = compute_totals(lines, discount_amount=discount)
        items = []
        for item, line in zip(cart.items, lines):
            items.append({
                "item_id": item.id,
                "product_id": item.product_id,
                "product_name": line.product_name,
                "product_sku": line.product_sku,
                "quantity": item.quantity,
                "stock_quantity": item.product.stock_quantity,
                "unit_price_excluding_vat": line.unit_price_excluding_vat,
                "vat_rate": line.vat_rate,
                "unit_vat_amount": line.unit_vat_amount,
                "unit_price_including_vat": line.unit_price_including_vat,
                "line_subtotal": line.line_subtotal,
                "line_vat": line.line_vat,
                "line_total": line.line_total,
            })

        return {
            "cart_id": cart.id,
            "user_id": cart.user_id,
            "session_id": cart.session_id,
            "items": items,
            "item_count": sum(item.quantity for item in cart.items),
            "voucher_code": cart.voucher.code if cart.voucher is not None else None,
            **totals.to_dict(),
        }

    # =========================================================================
    # Items
    # =========================================================================

    async def _available_product(self, product_id: int) -> Product:
        product = await self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product not found: {product_id}", code="PRODUCT_NOT_FOUND")
        if product.status == ProductStatus.inactive:
            raise ValidationError(f"Product is not available: {product.name}", code="PRODUCT_UNAVAILABLE")
        return product

    @staticmethod
    def _item_by_product(cart: Cart, product_id: int) -> Optional[CartItem]:
        return next((it for it in cart.items if it.product_id == product_id), None)

    @staticmethod
    def _item_by_id(cart: Cart, item_id: int) -> CartItem:
        item = next((it for it in cart.items if it.id == item_id), None)
        if item is None:
            raise NotFoundError(f"Cart item not found: {item_id}", code="CART_ITEM_NOT_FOUND")
        return item

    async def add_item(self, cart: Cart, product_id: int, quantity: int = 1) -> Cart:
        if quantity <= 0:
            raise ValidationError("Quantity must be at least 1")

        product = await self._available_product(product_id)
        item = self._item_by_product(cart, product_id)
        requested = quantity + (item.quantity if item is not None else 0)
        if requested > product.stock_quantity:
            raise InsufficientStockError(product.name, requested, product.stock_quantity)

        if item is not None:
            item.quantity = requested
        else:
            cart.items.append(CartItem(product=product, product_id=product.id, quantity=quantity))
        await self.db.flush()
        return await self.reload(cart)

    async def update_item(self, cart: Cart, item_id: int, quantity: int) -> Cart:
        item = self._item_by_id(cart, item_id)
        if quantity <= 0:
            return await self.remove_item(cart, item_id)

        product = item.product
        if quantity > product.stock_quantity:
            raise InsufficientStockError(product.name, quantity, product.stock_quantity)

        item.quantity = quantity
        await self.db.flush()
        return await self.reload(cart)

    async def remove_item(self, cart: Cart, item_id: int) -> Cart:
        item = self._item_by_id(cart, item_id)
        cart.items.remove(item)
        await self.db.flush()
        return await self.reload(cart)

    async def clear(self, cart: Cart) -> Cart:
        """Drop every line and the voucher."""
        cart.items.clear()
        cart.voucher = None
        await self.db.flush()
        return await self.reload(cart)

    # =========================================================================
    # Vouchers
    # =========================================================================

    async def validate_voucher(self, cart: Cart, code: str, user_id: Optional[int] = None) -> Dict[str, Any]:
        """Check `code` against the cart without attaching it."""
        subtotal = subtotal_of(self.priced_lines(cart))
        voucher = await self.vouchers.validate(code, subtotal, user_id if user_id is not None else cart.user_id)
        return {
            "valid": True,
            "code": voucher.code,
            "discount_amount": self.vouchers.discount_for(voucher, subtotal),
            "subtotal_excluding_vat": subtotal,
        }

    async def apply_voucher(self, cart: Cart, code: str, user_id: Optional[int] = None) -> Cart:
        subtotal = subtotal_of(self.priced_lines(cart))
        voucher = await self.vouchers.validate(code, subtotal, user_id if user_id is not None else cart.user_id)
        cart.voucher = voucher
        await self.db.flush()
        log.info("Voucher %s applied to cart %s", voucher.code, cart.id)
        return await self.reload(cart)

    async def remove_voucher(self, cart: Cart) -> Cart:
        cart.voucher = None
        await self.db.flush()
        return await self.reload(cart)

    # =========================================================================
    # Merge
    # =========================================================================

    async def merge_guest_cart(self, session_id: str, user_id: int) -> Cart:
        """
        Move a guest cart's lines into the user's cart.

        Quantities of the same product are summed and capped by current stock;
        lines for deactivated products are dropped. The guest
        cart is deleted.
        """
        user_cart = await self.get_or_create(user_id=user_id)
        guest_cart = await self.find(session_id=session_id)
        if guest_cart is None:
            return user_cart

        for guest_item in guest_cart.items:
            product = guest_item.product
            if product.status == ProductStatus.inactive:
                continue
            item = self._item_by_product(user_cart, product.id)
            wanted = guest_item.quantity + (item.quantity if item is not None else 0)
            quantity = min(wanted, product.stock_quantity)
            if quantity <= 0:
                continue
            if item is not None:
                item.quantity = quantity
            else:
                user_cart.items.append(CartItem(product=product, product_id=product.id, quantity=quantity))

        if user_cart.voucher is None and guest_cart.voucher is not None:
            user_cart.voucher = guest_cart.voucher

        await self.db.delete(guest_cart)
        await self.db.flush()
        log.info("Guest cart %s merged into cart %s of user %s", guest_cart.id, user_cart.id, user_id)
        return await self.reload(user_cart)
