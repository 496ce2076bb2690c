# shop_hub/services/orders.py
"""
Order Service.

Handles:
- Checkout: cart snapshot -> order with frozen prices, stock decrement,
  voucher usage and cart clear, all inside the caller's transaction
- Direct (staff) orders from an item list
- Lookup: by id, by order number, guest lookup by number + email/phone
- Fulfillment status (single step forward), payment status, tracking number
- Cancellation with stock restore
"""
from __future__ import annotations
import logging
import re
from collections import OrderedDict
from decimal import Decimal
from typing import Optional, List, Tuple, Iterable

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shop_hub.db_models import (
    Cart, Order, OrderItem, OrderStatus, OrderPaymentStatus, Product, ProductStatus,
    StockChangeType, Voucher,
)
from shop_hub.errors import (
    NotFoundError, ValidationError, InvalidTransitionError, InsufficientStockError,
)
from shop_hub.models import CheckoutIn, DirectOrderIn
from shop_hub.services.cart import CartService
from shop_hub.services.catalog import ProductService
from shop_hub.services.pricing import PricedLine, compute_totals, subtotal_of, round_money, ZERO
from shop_hub.services.vouchers import VoucherService
from shop_hub.settings import settings
from shop_hub.utils import day_stamp, next_document_number

log = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Linear fulfillment flow; cancelled sits outside it
STATUS_FLOW = [
    OrderStatus.pending,
    OrderStatus.paid,
    OrderStatus.packing,
    OrderStatus.packed,
    OrderStatus.shipped,
    OrderStatus.delivered,
]
CANCELLABLE = (OrderStatus.pending, OrderStatus.paid)


def next_status(current: OrderStatus) -> Optional[OrderStatus]:
    if current not in STATUS_FLOW:
        return None
    idx = STATUS_FLOW.index(current)
    return STATUS_FLOW[idx + 1] if idx + 1 < len(STATUS_FLOW) else None


class OrderService:
    """Service for placing and managing orders."""

    SORT_FIELDS = {
        "order_number": Order.order_number,
        "total_amount": Order.total_amount,
        "status": Order.status,
        "payment_status": Order.payment_status,
        "created_at": Order.created_at,
    }

    def __init__(self, db: AsyncSession):
        self.db = db
        self.products = ProductService(db)
        self.vouchers = VoucherService(db)

    # =========================================================================
    # Lookup
    # =========================================================================

    @staticmethod
    def _order_query():
        return select(Order).options(selectinload(Order.items)).execution_options(populate_existing=True)

    async def get(self, order_id: int) -> Order:
        result = await self.db.execute(self._order_query().where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Order not found: {order_id}", code="ORDER_NOT_FOUND")
        return order

    async def get_by_number(self, order_number: str) -> Order:
        result = await self.db.execute(self._order_query().where(Order.order_number == order_number))
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError(f"Order not found: {order_number}", code="ORDER_NOT_FOUND")
        return order

    async def find_guest_order(
        self,
        order_number: str,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Order:
        """Guest lookup: the order number plus the email or phone given at checkout."""
        contact = []
        if email:
            contact.append(func.lower(Order.guest_email) == email.strip().lower())
        if phone:
            contact.append(Order.guest_phone == phone.strip())
        if not contact:
            raise ValidationError("Email or phone is required", code="INVALID_CONTACT")

        stmt = self._order_query().where(Order.order_number == order_number.strip(), or_(*contact))
        order = (await self.db.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
        return order

    async def list(
        self,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[OrderPaymentStatus] = None,
        source_platform: Optional[str] = None,
        user_id: Optional[int] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Order], int]:
        conditions = []
        if status is not None:
            conditions.append(Order.status == status)
        if payment_status is not None:
            conditions.append(Order.payment_status == payment_status)
        if source_platform:
            conditions.append(Order.source_platform == source_platform)
        if user_id is not None:
            conditions.append(Order.user_id == user_id)
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(or_(
                Order.order_number.ilike(pattern),
                Order.guest_name.ilike(pattern),
                Order.guest_email.ilike(pattern),
                Order.guest_phone.ilike(pattern),
            ))

        total = (await self.db.execute(select(func.count(Order.id)).where(*conditions))).scalar_one()

        column = self.SORT_FIELDS.get(sort_by, Order.created_at)
        order_by = column.asc() if sort_order.lower() == "asc" else column.desc()
        stmt = (
            self._order_query()
            .where(*conditions)
            .order_by(order_by, Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars()), total

    # =========================================================================
    # Placement
    # =========================================================================

    async def next_order_number(self) -> str:
        prefix = f"ORD-{day_stamp()}-"
        stmt = select(func.max(Order.order_number)).where(Order.order_number.like(f"{prefix}%"))
        last = (await self.db.execute(stmt)).scalar_one_or_none()
        return next_document_number(prefix, last)

    @staticmethod
    def _validate_contact(data: CheckoutIn, user_id: Optional[int]) -> None:
        if data.guest_email and not EMAIL_RE.match(data.guest_email.strip()):
            raise ValidationError("Invalid email address", code="INVALID_CONTACT")
        if user_id is not None:
            return
        if not (data.guest_name or "").strip():
            raise ValidationError("Guest name is required", code="INVALID_CONTACT")
        if not (data.guest_email or "").strip() and not (data.guest_phone or "").strip():
            raise ValidationError("Guest email or phone is required", code="INVALID_CONTACT")

    @staticmethod
    def _validate_shipping(data: CheckoutIn) -> Decimal:
        if not (data.shipping_address or "").strip():
            raise ValidationError("Shipping address is required", code="INVALID_SHIPPING")
        shipping = data.shipping_cost if data.shipping_cost is not None else settings.DEFAULT_SHIPPING_COST
        if shipping < 0:
            raise ValidationError("Shipping cost cannot be negative", code="INVALID_SHIPPING")
        return round_money(shipping)

    async def _place(
        self,
        lines: Iterable[Tuple[Product, int]],
        data: CheckoutIn,
        user_id: Optional[int] = None,
        voucher: Optional[Voucher] = None,
        created_by: Optional[int] = None,
        source_platform: str = "website",
    ) -> Order:
        self._validate_contact(data, user_id)
        shipping = self._validate_shipping(data)

        priced: List[PricedLine] = []
        for product, quantity in lines:
            if product.status == ProductStatus.inactive:
                raise ValidationError(f"Product is not available: {product.name}", code="PRODUCT_UNAVAILABLE")
            if quantity > product.stock_quantity:
                raise InsufficientStockError(product.name, quantity, product.stock_quantity)
            priced.append(PricedLine.from_product(product, quantity))
        if not priced:
            raise ValidationError("Cart is empty", code="CART_EMPTY")

        subtotal = subtotal_of(priced)
        discount = ZERO
        if voucher is not None:
            await self.vouchers.check(voucher, subtotal, user_id)
            discount = self.vouchers.discount_for(voucher, subtotal)
        totals = compute_totals(priced, discount_amount=discount, shipping_cost=shipping)

        order = Order(
            order_number=await self.next_order_number(),
            user_id=user_id,
            guest_name=data.guest_name,
            guest_email=data.guest_email.strip().lower() if data.guest_email else None,
            guest_phone=data.guest_phone.strip() if data.guest_phone else None,
            shipping_address=data.shipping_address.strip(),
            shipping_subdistrict=data.shipping_subdistrict,
            shipping_district=data.shipping_district,
            shipping_province=data.shipping_province,
            shipping_postal_code=data.shipping_postal_code,
            subtotal_excluding_vat=totals.subtotal_excluding_vat,
            total_vat_amount=totals.total_vat_amount,
            discount_amount=totals.discount_amount,
            shipping_cost=totals.shipping_cost,
            total_amount=totals.total_amount,
            voucher_code=voucher.code if voucher is not None else None,
            status=OrderStatus.pending,
            payment_status=OrderPaymentStatus.pending,
            payment_method=data.payment_method,
            source_platform=source_platform,
            notes=data.notes,
            created_by=created_by,
            items=[
                OrderItem(
                    product_id=line.product_id,
                    product_name=line.product_name,
                    product_sku=line.product_sku,
                    quantity=line.quantity,
                    unit_price_excluding_vat=line.unit_price_excluding_vat,
                    vat_rate=line.vat_rate,
                    unit_vat_amount=line.unit_vat_amount,
                    unit_price_including_vat=line.unit_price_including_vat,
                    line_total_excluding_vat=line.line_subtotal,
                    line_total_vat=line.line_vat,
                    line_total_including_vat=line.line_total,
                )
                for line in priced
            ],
        )
        self.db.add(order)
        await self.db.flush()

        # conditional decrement; raises InsufficientStockError if another
        # order took the stock since the check above
        for line in priced:
            await self.products.change_stock(
                line.product_id,
                -line.quantity,
                StockChangeType.sale,
                reference_type="order",
                reference_id=order.id,
                notes=f"Order {order.order_number}",
                user_id=created_by or user_id,
            )

        if voucher is not None:
            await self.vouchers.record_usage(voucher, user_id=user_id, order_id=order.id)

        log.info(
            "Order placed %s user=%s lines=%d subtotal=%s vat=%s discount=%s total=%s",
            order.order_number, user_id, len(priced), totals.subtotal_excluding_vat,
            totals.total_vat_amount, totals.discount_amount, totals.total_amount,
        )
        return await self.get(order.id)

    async def create_from_cart(self, cart: Cart, data: CheckoutIn, user_id: Optional[int] = None) -> Order:
        """Checkout: snapshot the cart into an order and clear the cart."""
        if not cart.items:
            raise ValidationError("Cart is empty", code="CART_EMPTY")

        order = await self._place(
            [(item.product, item.quantity) for item in cart.items],
            data,
            user_id=user_id,
            voucher=cart.voucher,
        )
        await CartService(self.db).clear(cart)
        return order

    async def create_direct(self, data: DirectOrderIn, staff_user_id: Optional[int] = None) -> Order:
        """Staff order from an explicit item list (phone, marketplace, walk-in)."""
        quantities: "OrderedDict[int, int]" = OrderedDict()
        for line in data.items:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity

        lines = []
        for product_id, quantity in quantities.items():
            lines.append((await self.products.get(product_id), quantity))

        voucher = None
        if data.voucher_code:
            voucher = await self.vouchers.validate(
                data.voucher_code,
                subtotal_of([PricedLine.from_product(p, q) for p, q in lines]),
                data.user_id,
            )

        return await self._place(
            lines,
            data,
            user_id=data.user_id,
            voucher=voucher,
            created_by=staff_user_id,
            source_platform=data.source_platform or "website",
        )

    # =========================================================================
    # Status updates
    # =========================================================================

    async def update_status(self, order_id: int, status: OrderStatus, user_id: Optional[int] = None) -> Order:
        """Advance fulfillment by exactly one step, or cancel."""
        status = OrderStatus(status)
        if status == OrderStatus.cancelled:
            return await self.cancel(order_id, user_id)

        order = await self.get(order_id)
        expected = next_status(order.status)
        if status != expected:
            raise InvalidTransitionError(
                f"Cannot change order status from {order.status.value} to {status.value}",
                details={"current": order.status.value, "allowed": expected.value if expected else None},
            )

        order.status = status
        await self.db.flush()
        log.info("Order %s status -> %s", order.order_number, status.value)
        return order

    async def update_payment_status(self, order_id: int, payment_status: OrderPaymentStatus) -> Order:
        payment_status = OrderPaymentStatus(payment_status)
        order = await self.get(order_id)
        if order.status == OrderStatus.cancelled and payment_status == OrderPaymentStatus.paid:
            raise InvalidTransitionError("Cannot mark a cancelled order as paid")

        order.payment_status = payment_status
        if payment_status == OrderPaymentStatus.paid and order.status == OrderStatus.pending:
            order.status = OrderStatus.paid
        await self.db.flush()
        log.info("Order %s payment_status -> %s", order.order_number, payment_status.value)
        return order

    async def set_tracking_number(self, order_id: int, tracking_number: str) -> Order:
        order = await self.get(order_id)
        order.tracking_number = tracking_number.strip()
        await self.db.flush()
        return order

    async def cancel(self, order_id: int, user_id: Optional[int] = None) -> Order:
        """Cancel a pending or paid order and put its stock back."""
        order = await self.get(order_id)
        if order.status not in CANCELLABLE:
            raise InvalidTransitionError(
                f"Cannot cancel order in status {order.status.value}",
                details={"current": order.status.value},
            )

        for item in order.items:
            if item.product_id is None:
                continue
            await self.products.change_stock(
                item.product_id,
                item.quantity,
                StockChangeType.return_,
                reference_type="order_cancellation",
                reference_id=order.id,
                notes=f"Order {order.order_number} cancelled",
                user_id=user_id,
            )

        was_paid = order.payment_status == OrderPaymentStatus.paid
        order.status = OrderStatus.cancelled
        order.payment_status = OrderPaymentStatus.refunded if was_paid else OrderPaymentStatus.failed
        await self.db.flush()
        log.info("Order %s cancelled by user=%s payment_status=%s", order.order_number, user_id,
                 order.payment_status.value)
        return order
