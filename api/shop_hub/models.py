from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Literal
from pydantic import BaseModel, Field, ConfigDict

from shop_hub.db_models import (
    ProductStatus, StockChangeType, DiscountType, VoucherStatus,
    OrderStatus, OrderPaymentStatus, PaymentStatus, PaymentMethod,
)


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class CategoryIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    prefix: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True

class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    prefix: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

class CategoryOut(ORMModel):
    id: int
    name: str
    prefix: Optional[str] = None
    description: Optional[str] = None
    is_active: bool

class ProductIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    sku: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[int] = None
    price_excluding_vat: Decimal = Field(ge=0)
    vat_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    cost_price_excluding_vat: Optional[Decimal] = Field(default=None, ge=0)
    stock_quantity: int = Field(default=0, ge=0)
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)
    image_path: Optional[str] = None
    status: ProductStatus = ProductStatus.active

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    sku: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[int] = None
    price_excluding_vat: Optional[Decimal] = Field(default=None, ge=0)
    vat_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    cost_price_excluding_vat: Optional[Decimal] = Field(default=None, ge=0)
    low_stock_threshold: Optional[int] = Field(default=None, ge=0)
    image_path: Optional[str] = None
    status: Optional[ProductStatus] = None

class ProductOut(ORMModel):
    id: int
    sku: str
    name: str
    description: Optional[str] = None
    category_id: Optional[int] = None
    price_excluding_vat: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    price_including_vat: Decimal
    cost_price_excluding_vat: Optional[Decimal] = None
    stock_quantity: int
    low_stock_threshold: int
    image_path: Optional[str] = None
    is_low_stock: bool
    status: ProductStatus
    created_at: datetime
    updated_at: datetime

class ProductListOut(BaseModel):
    items: List[ProductOut]
    total: int
    page: int
    limit: int

class StockAdjustIn(BaseModel):
    quantity_change: int
    change_type: StockChangeType = StockChangeType.adjustment
    notes: Optional[str] = None

class StockHistoryOut(ORMModel):
    id: int
    product_id: int
    quantity_change: int
    quantity_before: int
    quantity_after: int
    change_type: StockChangeType
    reference_type: Optional[str] = None
    reference_id: Optional[int] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------

class CartItemIn(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)

class CartItemUpdate(BaseModel):
    # 0 or less removes the line
    quantity: int

class VoucherCodeIn(BaseModel):
    code: str = Field(min_length=1, max_length=50)

class CartLineOut(BaseModel):
    item_id: int
    product_id: int
    product_name: str
    product_sku: str
    quantity: int
    stock_quantity: int
    unit_price_excluding_vat: Decimal
    vat_rate: Decimal
    unit_vat_amount: Decimal
    unit_price_including_vat: Decimal
    line_subtotal: Decimal
    line_vat: Decimal
    line_total: Decimal

class CartOut(BaseModel):
    cart_id: int
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    items: List[CartLineOut]
    item_count: int
    voucher_code: Optional[str] = None
    subtotal_excluding_vat: Decimal
    total_vat_amount: Decimal
    discount_amount: Decimal
    shipping_cost: Decimal
    total_amount: Decimal

class VoucherCheckOut(BaseModel):
    valid: bool
    code: str
    discount_amount: Decimal
    subtotal_excluding_vat: Decimal


# ---------------------------------------------------------------------------
# Vouchers
# ---------------------------------------------------------------------------

class VoucherIn(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    minimum_order_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    max_discount_amount: Optional[Decimal] = Field(default=None, gt=0)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    usage_limit_per_customer: Optional[int] = Field(default=1, ge=1)
    start_date: datetime
    end_date: datetime
    status: VoucherStatus = VoucherStatus.active

class VoucherUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(default=None, gt=0)
    minimum_order_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(default=None, gt=0)
    usage_limit: Optional[int] = Field(default=None, ge=1)
    usage_limit_per_customer: Optional[int] = Field(default=None, ge=1)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[VoucherStatus] = None

class VoucherOut(ORMModel):
    id: int
    code: str
    name: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal
    minimum_order_amount: Decimal
    max_discount_amount: Optional[Decimal] = None
    usage_limit: Optional[int] = None
    usage_limit_per_customer: Optional[int] = None
    usage_count: int
    start_date: datetime
    end_date: datetime
    status: VoucherStatus

class VoucherUsageOut(ORMModel):
    id: int
    voucher_id: int
    user_id: Optional[int] = None
    order_id: Optional[int] = None
    used_at: datetime


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class CheckoutIn(BaseModel):
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    shipping_address: Optional[str] = None
    shipping_subdistrict: Optional[str] = None
    shipping_district: Optional[str] = None
    shipping_province: Optional[str] = None
    shipping_postal_code: Optional[str] = None
    shipping_cost: Optional[Decimal] = None
    payment_method: PaymentMethod = PaymentMethod.bank_transfer
    notes: Optional[str] = None

class OrderLineIn(BaseModel):
    product_id: int
    quantity: int = Field(ge=1)

class DirectOrderIn(CheckoutIn):
    items: List[OrderLineIn] = Field(min_length=1)
    user_id: Optional[int] = None
    voucher_code: Optional[str] = None
    source_platform: str = "website"

class OrderItemOut(ORMModel):
    id: int
    product_id: Optional[int] = None
    product_name: str
    product_sku: str
    quantity: int
    unit_price_excluding_vat: Decimal
    vat_rate: Decimal
    unit_vat_amount: Decimal
    unit_price_including_vat: Decimal
    line_total_excluding_vat: Decimal
    line_total_vat: Decimal
    line_total_including_vat: Decimal

class OrderOut(ORMModel):
    id: int
    order_number: str
    user_id: Optional[int] = None
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    shipping_address: str
    shipping_subdistrict: Optional[str] = None
    shipping_district: Optional[str] = None
    shipping_province: Optional[str] = None
    shipping_postal_code: Optional[str] = None
    subtotal_excluding_vat: Decimal
    total_vat_amount: Decimal
    discount_amount: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    voucher_code: Optional[str] = None
    status: OrderStatus
    payment_status: OrderPaymentStatus
    payment_method: PaymentMethod
    source_platform: str
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemOut] = Field(default_factory=list)

class OrderListOut(BaseModel):
    items: List[OrderOut]
    total: int
    page: int
    limit: int

class OrderStatusIn(BaseModel):
    status: OrderStatus

class OrderPaymentStatusIn(BaseModel):
    payment_status: OrderPaymentStatus

class TrackingIn(BaseModel):
    tracking_number: str = Field(min_length=1, max_length=100)

class GuestLookupIn(BaseModel):
    order_number: str
    email: Optional[str] = None
    phone: Optional[str] = None


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

class SlipUploadIn(BaseModel):
    order_id: int
    slip_image_path: str = Field(min_length=1, max_length=500)
    payment_method: PaymentMethod = PaymentMethod.bank_transfer
    notes: Optional[str] = None

class ManualPaymentIn(BaseModel):
    order_id: int
    payment_method: PaymentMethod = PaymentMethod.cash
    amount: Optional[Decimal] = Field(default=None, gt=0)
    notes: Optional[str] = None

class PaymentRejectIn(BaseModel):
    rejection_reason: str = Field(min_length=1)

class PaymentConfirmIn(BaseModel):
    verified: bool = True
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None

class PaymentOut(ORMModel):
    id: int
    order_id: int
    payment_method: PaymentMethod
    amount: Decimal
    slip_image_path: Optional[str] = None
    status: PaymentStatus
    rejection_reason: Optional[str] = None
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    receipt_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

class PaymentListOut(BaseModel):
    items: List[PaymentOut]
    total: int
    page: int
    limit: int

class PromptPayAccountOut(BaseModel):
    bank_name: str
    account_number: str
    account_name: str

class PromptPayOut(BaseModel):
    order_number: str
    amount: Decimal
    promptpay_id: str
    payload: str
    bank_account: PromptPayAccountOut


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------

class ExpenseIn(BaseModel):
    description: str = Field(min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, max_length=100)
    amount_excluding_vat: Decimal = Field(ge=0)
    vat_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    input_vat_amount: Optional[Decimal] = Field(default=None, ge=0)
    total_amount: Optional[Decimal] = Field(default=None, ge=0)
    expense_date: date
    receipt_file_path: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_tax_id: Optional[str] = Field(default=None, max_length=20)
    notes: Optional[str] = None

class ExpenseUpdate(BaseModel):
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, max_length=100)
    amount_excluding_vat: Optional[Decimal] = Field(default=None, ge=0)
    vat_rate: Optional[Decimal] = Field(default=None, ge=0, le=100)
    input_vat_amount: Optional[Decimal] = Field(default=None, ge=0)
    total_amount: Optional[Decimal] = Field(default=None, ge=0)
    expense_date: Optional[date] = None
    receipt_file_path: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_tax_id: Optional[str] = Field(default=None, max_length=20)
    notes: Optional[str] = None

class ExpenseOut(ORMModel):
    id: int
    description: str
    category: Optional[str] = None
    amount_excluding_vat: Decimal
    vat_rate: Decimal
    input_vat_amount: Decimal
    total_amount: Decimal
    expense_date: date
    receipt_file_path: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_tax_id: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime

class ExpenseListOut(BaseModel):
    items: List[ExpenseOut]
    total: int
    page: int
    limit: int


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

Period = Literal["day", "month", "year"]
