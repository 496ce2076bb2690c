# shop_hub/db_models.py
"""
SQLAlchemy ORM Models for Shop Hub.

Catalog, carts, vouchers, orders, payments and expenses.
"""
from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
import enum

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, Text, Date, DateTime,
    Numeric, ForeignKey, Index, CheckConstraint, UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.ext.hybrid import hybrid_property

from shop_hub.database import Base
from shop_hub.utils import utcnow

# SQLite only auto-increments INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")

Money = Numeric(12, 2)
Rate = Numeric(5, 2)

# ============================================================================
# ENUMS
# ============================================================================

class UserRole(str, enum.Enum):
    customer = "customer"
    staff = "staff"
    admin = "admin"


class ProductStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"
    out_of_stock = "out_of_stock"


class StockChangeType(str, enum.Enum):
    sale = "sale"
    return_ = "return"
    adjustment = "adjustment"
    restock = "restock"


class DiscountType(str, enum.Enum):
    percentage = "percentage"
    fixed_amount = "fixed_amount"


class VoucherStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"


class OrderStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    packing = "packing"
    packed = "packed"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class OrderPaymentStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    refunded = "refunded"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    verified = "verified"
    rejected = "rejected"


class PaymentMethod(str, enum.Enum):
    bank_transfer = "bank_transfer"
    promptpay = "promptpay"
    cash = "cash"
    other = "other"


# ============================================================================
# MIXIN for updated_at
# ============================================================================

class TimestampMixin:
    """Mixin for created_at and updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )


# ============================================================================
# 1. USERS
# ============================================================================

class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(30))
    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole, name="user_role"),
        default=UserRole.customer,
        nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.staff, UserRole.admin)


# ============================================================================
# 2. PRODUCT CATEGORIES
# ============================================================================

class ProductCategory(TimestampMixin, Base):
    __tablename__ = "product_categories"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    prefix: Mapped[Optional[str]] = mapped_column(String(4), unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    products: Mapped[List["Product"]] = relationship(back_populates="category")


# ============================================================================
# 3. PRODUCTS
# ============================================================================

class Product(TimestampMixin, Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    sku: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    category_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("product_categories.id", ondelete="SET NULL")
    )
    # Pricing: vat_amount and price_including_vat are derived, see services.pricing
    price_excluding_vat: Mapped[Decimal] = mapped_column(Money, nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    price_including_vat: Mapped[Decimal] = mapped_column(Money, nullable=False)
    cost_price_excluding_vat: Mapped[Optional[Decimal]] = mapped_column(Money)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    image_path: Mapped[Optional[str]] = mapped_column(String(500))
    status: Mapped[ProductStatus] = mapped_column(
        SQLEnum(ProductStatus, name="product_status"),
        default=ProductStatus.active,
        nullable=False
    )

    # Relationships
    category: Mapped[Optional["ProductCategory"]] = relationship(back_populates="products")
    stock_history: Mapped[List["StockHistory"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="chk_products_stock_non_negative"),
        CheckConstraint("price_excluding_vat >= 0", name="chk_products_price_non_negative"),
        CheckConstraint("vat_rate >= 0 AND vat_rate <= 100", name="chk_products_vat_rate"),
        Index("idx_products_category", "category_id"),
        Index("idx_products_status", "status"),
    )

    @hybrid_property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.low_stock_threshold


# ============================================================================
# 4. STOCK HISTORY
# ============================================================================

class StockHistory(Base):
    __tablename__ = "stock_history"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    change_type: Mapped[StockChangeType] = mapped_column(
        SQLEnum(
            StockChangeType,
            name="stock_change_type",
            values_callable=lambda enum: [m.value for m in enum],
        ),
        nullable=False
    )
    reference_type: Mapped[Optional[str]] = mapped_column(String(50))
    reference_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    product: Mapped["Product"] = relationship(back_populates="stock_history")

    __table_args__ = (
        Index("idx_stock_history_product", "product_id", "created_at"),
    )


# ============================================================================
# 5. VOUCHERS
# ============================================================================

class Voucher(TimestampMixin, Base):
    __tablename__ = "vouchers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    discount_type: Mapped[DiscountType] = mapped_column(
        SQLEnum(DiscountType, name="discount_type"),
        nullable=False
    )
    discount_value: Mapped[Decimal] = mapped_column(Money, nullable=False)
    minimum_order_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    max_discount_amount: Mapped[Optional[Decimal]] = mapped_column(Money)
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer)
    usage_limit_per_customer: Mapped[Optional[int]] = mapped_column(Integer, default=1)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[VoucherStatus] = mapped_column(
        SQLEnum(VoucherStatus, name="voucher_status"),
        default=VoucherStatus.active,
        nullable=False
    )

    # Relationships
    usages: Mapped[List["VoucherUsage"]] = relationship(
        back_populates="voucher",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "discount_type != 'percentage' OR discount_value <= 100",
            name="chk_vouchers_percentage_max"
        ),
        CheckConstraint("discount_value > 0", name="chk_vouchers_value_positive"),
        CheckConstraint("start_date < end_date", name="chk_vouchers_window"),
    )


class VoucherUsage(Base):
    __tablename__ = "voucher_usage"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    voucher_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("vouchers.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="SET NULL"))
    order_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("orders.id", ondelete="SET NULL"))
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    voucher: Mapped["Voucher"] = relationship(back_populates="usages")

    __table_args__ = (
        Index("idx_voucher_usage_voucher_user", "voucher_id", "user_id"),
    )


# ============================================================================
# 6. CARTS
# ============================================================================

class Cart(TimestampMixin, Base):
    __tablename__ = "carts"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), unique=True
    )
    session_id: Mapped[Optional[str]] = mapped_column(String(128), unique=True)
    voucher_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("vouchers.id", ondelete="SET NULL")
    )

    # Relationships
    items: Mapped[List["CartItem"]] = relationship(
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
    )
    voucher: Mapped[Optional["Voucher"]] = relationship()

    __table_args__ = (
        # owned by a user OR a guest session, never both
        CheckConstraint(
            "(user_id IS NULL) <> (session_id IS NULL)",
            name="chk_carts_single_owner"
        ),
    )


class CartItem(Base):
    __tablename__ = "cart_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    cart_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    cart: Mapped["Cart"] = relationship(back_populates="items")
    product: Mapped["Product"] = relationship()

    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_cart_items_product"),
        CheckConstraint("quantity > 0", name="chk_cart_items_quantity"),
    )


# ============================================================================
# 7. ORDERS
# ============================================================================

class Order(TimestampMixin, Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="SET NULL"))
    guest_name: Mapped[Optional[str]] = mapped_column(String(255))
    guest_email: Mapped[Optional[str]] = mapped_column(String(255))
    guest_phone: Mapped[Optional[str]] = mapped_column(String(30))

    shipping_address: Mapped[str] = mapped_column(Text, nullable=False)
    shipping_subdistrict: Mapped[Optional[str]] = mapped_column(String(100))
    shipping_district: Mapped[Optional[str]] = mapped_column(String(100))
    shipping_province: Mapped[Optional[str]] = mapped_column(String(100))
    shipping_postal_code: Mapped[Optional[str]] = mapped_column(String(10))

    # Frozen totals
    subtotal_excluding_vat: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_vat_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    shipping_cost: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    voucher_code: Mapped[Optional[str]] = mapped_column(String(50))

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(OrderStatus, name="order_status"),
        default=OrderStatus.pending,
        nullable=False
    )
    payment_status: Mapped[OrderPaymentStatus] = mapped_column(
        SQLEnum(OrderPaymentStatus, name="order_payment_status"),
        default=OrderPaymentStatus.pending,
        nullable=False
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method"),
        default=PaymentMethod.bank_transfer,
        nullable=False
    )
    source_platform: Mapped[str] = mapped_column(String(50), default="website", nullable=False)
    tracking_number: Mapped[Optional[str]] = mapped_column(String(100))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="SET NULL"))

    # Relationships
    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    payments: Mapped[List["Payment"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="Payment.id",
    )

    __table_args__ = (
        Index("idx_orders_status", "status"),
        Index("idx_orders_payment_status", "payment_status"),
        Index("idx_orders_user", "user_id"),
        Index("idx_orders_created", "created_at"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    # Product may be deleted later, name/sku are kept on the line
    product_id: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("products.id", ondelete="SET NULL"))
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_sku: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_excluding_vat: Mapped[Decimal] = mapped_column(Money, nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    unit_vat_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    unit_price_including_vat: Mapped[Decimal] = mapped_column(Money, nullable=False)
    line_total_excluding_vat: Mapped[Decimal] = mapped_column(Money, nullable=False)
    line_total_vat: Mapped[Decimal] = mapped_column(Money, nullable=False)
    line_total_including_vat: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # Relationships
    order: Mapped["Order"] = relationship(back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="chk_order_items_quantity"),
        Index("idx_order_items_order", "order_id"),
        Index("idx_order_items_product", "product_id"),
    )


# ============================================================================
# 8. PAYMENTS
# ============================================================================

class Payment(TimestampMixin, Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method"),
        default=PaymentMethod.bank_transfer,
        nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    slip_image_path: Mapped[Optional[str]] = mapped_column(String(500))
    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="payment_status"),
        default=PaymentStatus.pending,
        nullable=False
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    verified_by: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="SET NULL"))
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    receipt_number: Mapped[Optional[str]] = mapped_column(String(30), unique=True)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Relationships
    order: Mapped["Order"] = relationship(back_populates="payments")

    __table_args__ = (
        Index("idx_payments_order", "order_id"),
        Index("idx_payments_status", "status"),
    )


# ============================================================================
# 9. EXPENSES
# ============================================================================

class Expense(TimestampMixin, Base):
    """A business purchase; its input VAT offsets the output VAT on sales."""
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    amount_excluding_vat: Mapped[Decimal] = mapped_column(Money, nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(Rate, default=Decimal("7.00"), nullable=False)
    input_vat_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    receipt_file_path: Mapped[Optional[str]] = mapped_column(String(500))
    vendor_name: Mapped[Optional[str]] = mapped_column(String(255))
    vendor_tax_id: Mapped[Optional[str]] = mapped_column(String(20))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[int]] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="SET NULL"))

    __table_args__ = (
        CheckConstraint("amount_excluding_vat >= 0", name="chk_expenses_amount"),
        Index("idx_expenses_date", "expense_date"),
        Index("idx_expenses_category", "category"),
    )
