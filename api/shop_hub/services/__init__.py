# shop_hub/services/__init__.py
"""
Business logic services for Shop Hub.
"""
from shop_hub.services.sku import SKUGeneratorService
from shop_hub.services.catalog import CategoryService, ProductService
from shop_hub.services.vouchers import VoucherService
from shop_hub.services.cart import CartService
from shop_hub.services.orders import OrderService
from shop_hub.services.payments import PaymentService
from shop_hub.services.expenses import ExpenseService
from shop_hub.services.reports import FinancialReportService

__all__ = [
    "SKUGeneratorService",
    "CategoryService",
    "ProductService",
    "VoucherService",
    "CartService",
    "OrderService",
    "PaymentService",
    "ExpenseService",
    "FinancialReportService",
]
