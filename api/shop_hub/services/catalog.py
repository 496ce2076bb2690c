# shop_hub/services/catalog.py
"""
Catalog Services - categories, products and stock.

Handles:
- Category CRUD with SKU prefix validation
- Product CRUD with derived VAT fields and generated SKUs
- Stock changes as conditional single-row updates + stock history rows
- Low-stock listing
"""
from __future__ import annotations
import logging
from typing import Optional, List, Tuple

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.db_models import (
    Product, ProductCategory, ProductStatus, StockHistory, StockChangeType,
)
from shop_hub.errors import (
    ConflictError, NotFoundError, ValidationError, InsufficientStockError,
)
from shop_hub.models import CategoryIn, CategoryUpdate, ProductIn, ProductUpdate
from shop_hub.services.pricing import round_money, vat_amount
from shop_hub.services.sku import SKUGeneratorService
from shop_hub.settings import settings

log = logging.getLogger(__name__)


def apply_pricing(product: Product) -> Product:
    """Recompute vat_amount and price_including_vat from net price and rate."""
    product.price_excluding_vat = round_money(product.price_excluding_vat)
    product.vat_rate = round_money(product.vat_rate)
    product.vat_amount = vat_amount(product.price_excluding_vat, product.vat_rate)
    product.price_including_vat = product.price_excluding_vat + product.vat_amount
    return product


class CategoryService:
    """Service for product categories."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _check_prefix(self, prefix: Optional[str], exclude_id: Optional[int] = None) -> Optional[str]:
        if prefix is None or prefix == "":
            return None
        prefix = prefix.strip().upper()
        if not SKUGeneratorService.is_valid_prefix(prefix):
            raise ValidationError(
                f"Invalid category prefix: {prefix!r}, expected 2-4 uppercase letters",
                code="INVALID_PREFIX",
            )
        stmt = select(ProductCategory.id).where(ProductCategory.prefix == prefix)
        if exclude_id is not None:
            stmt = stmt.where(ProductCategory.id != exclude_id)
        if (await self.db.execute(stmt)).first() is not None:
            raise ConflictError(f"Category prefix already in use: {prefix}", code="DUPLICATE_PREFIX")
        return prefix

    async def _check_name(self, name: str, exclude_id: Optional[int] = None) -> str:
        name = name.strip()
        stmt = select(ProductCategory.id).where(ProductCategory.name == name)
        if exclude_id is not None:
            stmt = stmt.where(ProductCategory.id != exclude_id)
        if (await self.db.execute(stmt)).first() is not None:
            raise ConflictError(f"Category already exists: {name}", code="DUPLICATE_CATEGORY")
        return name

    async def create(self, data: CategoryIn) -> ProductCategory:
        category = ProductCategory(
            name=await self._check_name(data.name),
            prefix=await self._check_prefix(data.prefix),
            description=data.description,
            is_active=data.is_active,
        )
        self.db.add(category)
        await self.db.flush()
        log.info("Category created id=%s name=%s prefix=%s", category.id, category.name, category.prefix)
        return category

    async def list(self, active_only: bool = False) -> List[ProductCategory]:
        stmt = select(ProductCategory).order_by(ProductCategory.name)
        if active_only:
            stmt = stmt.where(ProductCategory.is_active == True)  # noqa: E712
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def get(self, category_id: int) -> ProductCategory:
        category = await self.db.get(ProductCategory, category_id)
        if category is None:
            raise NotFoundError(f"Category not found: {category_id}", code="CATEGORY_NOT_FOUND")
        return category

    async def update(self, category_id: int, data: CategoryUpdate) -> ProductCategory:
        category = await self.get(category_id)
        changes = data.model_dump(exclude_unset=True)

        if "name" in changes and changes["name"] is not None:
            category.name = await self._check_name(changes["name"], exclude_id=category.id)
        if "prefix" in changes:
            category.prefix = await self._check_prefix(changes["prefix"], exclude_id=category.id)
        if "description" in changes:
            category.description = changes["description"]
        if changes.get("is_active") is not None:
            category.is_active = changes["is_active"]

        await self.db.flush()
        return category


class ProductService:
    """Service for products and their stock."""

    SORT_FIELDS = {
        "name": Product.name,
        "price_excluding_vat": Product.price_excluding_vat,
        "price_including_vat": Product.price_including_vat,
        "stock_quantity": Product.stock_quantity,
        "created_at": Product.created_at,
    }

    def __init__(self, db: AsyncSession):
        self.db = db
        self.sku = SKUGeneratorService(db)

    # =========================================================================
    # Lookup
    # =========================================================================

    async def get(self, product_id: int) -> Product:
        product = await self.db.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product not found: {product_id}", code="PRODUCT_NOT_FOUND")
        return product

    async def get_by_sku(self, sku: str) -> Product:
        stmt = select(Product).where(Product.sku == sku.strip().upper())
        result = await self.db.execute(stmt)
        product = result.scalar_one_or_none()
        if product is None:
            raise NotFoundError(f"Product not found: {sku}", code="PRODUCT_NOT_FOUND")
        return product

    async def list(
        self,
        search: Optional[str] = None,
        category_id: Optional[int] = None,
        status: Optional[ProductStatus] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Product], int]:
        conditions = []
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(or_(
                Product.name.ilike(pattern),
                Product.description.ilike(pattern),
                Product.sku.ilike(pattern),
            ))
        if category_id is not None:
            conditions.append(Product.category_id == category_id)
        if status is not None:
            conditions.append(Product.status == status)

        count_stmt = select(func.count(Product.id)).where(*conditions)
        total = (await self.db.execute(count_stmt)).scalar_one()

        column = self.SORT_FIELDS.get(sort_by, Product.created_at)
        order = column.asc() if sort_order.lower() == "asc" else column.desc()
        stmt = (
            select(Product)
            .where(*conditions)
            .order_by(order, Product.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars()), total

    async def low_stock(self) -> List[Product]:
        stmt = (
            select(Product)
            .where(
                Product.is_low_stock,
                Product.status == ProductStatus.active,
            )
            .order_by(Product.stock_quantity.asc(), Product.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    # =========================================================================
    # Create / update / delete
    # =========================================================================

    async def create(self, data: ProductIn, user_id: Optional[int] = None) -> Product:
        if data.category_id is not None:
            await CategoryService(self.db).get(data.category_id)

        if data.sku:
            sku = await self.sku.validate_manual(data.sku)
        else:
            sku = await self.sku.generate(data.category_id)

        product = Product(
            sku=sku,
            name=data.name.strip(),
            description=data.description,
            category_id=data.category_id,
            price_excluding_vat=data.price_excluding_vat,
            vat_rate=data.vat_rate if data.vat_rate is not None else settings.DEFAULT_VAT_RATE,
            cost_price_excluding_vat=data.cost_price_excluding_vat,
            stock_quantity=data.stock_quantity,
            low_stock_threshold=(
                data.low_stock_threshold
                if data.low_stock_threshold is not None
                else settings.DEFAULT_LOW_STOCK_THRESHOLD
            ),
            image_path=data.image_path,
            status=data.status,
        )
        apply_pricing(product)
        if product.stock_quantity == 0 and product.status == ProductStatus.active:
            product.status = ProductStatus.out_of_stock

        self.db.add(product)
        try:
            await self.db.flush()
        except IntegrityError:
            raise ConflictError(f"SKU already exists: {sku}", code="DUPLICATE_SKU")

        if product.stock_quantity > 0:
            self.db.add(StockHistory(
                product_id=product.id,
                quantity_change=product.stock_quantity,
                quantity_before=0,
                quantity_after=product.stock_quantity,
                change_type=StockChangeType.restock,
                reference_type="product_create",
                reference_id=product.id,
                notes="Initial stock",
                created_by=user_id,
            ))
            await self.db.flush()

        log.info("Product created id=%s sku=%s price=%s vat=%s", product.id, product.sku,
                 product.price_excluding_vat, product.vat_rate)
        return product

    async def update(self, product_id: int, data: ProductUpdate) -> Product:
        product = await self.get(product_id)
        changes = data.model_dump(exclude_unset=True)

        if changes.get("sku"):
            product.sku = await self.sku.validate_manual(changes["sku"], exclude_product_id=product.id)
        if "category_id" in changes:
            if changes["category_id"] is not None:
                await CategoryService(self.db).get(changes["category_id"])
            product.category_id = changes["category_id"]

        # nullable columns may be cleared, the rest only overwritten
        for field in ("description", "cost_price_excluding_vat", "image_path"):
            if field in changes:
                setattr(product, field, changes[field])
        for field in ("name", "low_stock_threshold", "status"):
            if changes.get(field) is not None:
                setattr(product, field, changes[field])

        if changes.get("price_excluding_vat") is not None:
            product.price_excluding_vat = changes["price_excluding_vat"]
        if changes.get("vat_rate") is not None:
            product.vat_rate = changes["vat_rate"]
        apply_pricing(product)

        await self.db.flush()
        return product

    async def delete(self, product_id: int) -> Product:
        """Soft delete: the product stays referenced by orders."""
        product = await self.get(product_id)
        product.status = ProductStatus.inactive
        await self.db.flush()
        log.info("Product deactivated id=%s sku=%s", product.id, product.sku)
        return product

    # =========================================================================
    # Stock
    # =========================================================================

    async def _sync_stock_status(self, product_id: int, quantity_after: int) -> None:
        if quantity_after <= 0:
            stmt = (
                update(Product)
                .where(Product.id == product_id, Product.status == ProductStatus.active)
                .values(status=ProductStatus.out_of_stock)
            )
        else:
            stmt = (
                update(Product)
                .where(Product.id == product_id, Product.status == ProductStatus.out_of_stock)
                .values(status=ProductStatus.active)
            )
        await self.db.execute(stmt.execution_options(synchronize_session=False))

    async def change_stock(
        self,
        product_id: int,
        quantity_change: int,
        change_type: StockChangeType,
        reference_type: Optional[str] = None,
        reference_id: Optional[int] = None,
        notes: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> StockHistory:
        """
        Apply a stock delta as one conditional UPDATE.

        A negative delta only succeeds while stock_quantity >= -delta, so two
        concurrent sales can never take stock below zero.
        """
        if quantity_change == 0:
            raise ValidationError("Quantity change must not be zero")

        product = await self.get(product_id)

        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(stock_quantity=Product.stock_quantity + quantity_change)
            .returning(Product.stock_quantity)
            .execution_options(synchronize_session=False)
        )
        if quantity_change < 0:
            stmt = stmt.where(Product.stock_quantity >= -quantity_change)

        result = await self.db.execute(stmt)
        quantity_after = result.scalar_one_or_none()
        if quantity_after is None:
            await self.db.refresh(product, ["stock_quantity"])
            raise InsufficientStockError(product.name, -quantity_change, product.stock_quantity)

        await self._sync_stock_status(product_id, quantity_after)
        await self.db.refresh(product)

        history = StockHistory(
            product_id=product_id,
            quantity_change=quantity_change,
            quantity_before=quantity_after - quantity_change,
            quantity_after=quantity_after,
            change_type=change_type,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            created_by=user_id,
        )
        self.db.add(history)
        await self.db.flush()

        log.info(
            "Stock %s product=%s change=%+d %d->%d ref=%s:%s",
            change_type.value, product.sku, quantity_change,
            history.quantity_before, history.quantity_after, reference_type, reference_id,
        )
        return history

    async def adjust_stock(
        self,
        product_id: int,
        quantity_change: int,
        change_type: StockChangeType = StockChangeType.adjustment,
        notes: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Product:
        """Manual stock adjustment by staff; stock must not go below 0."""
        await self.change_stock(
            product_id, quantity_change, change_type,
            reference_type="manual", notes=notes, user_id=user_id,
        )
        return await self.get(product_id)

    async def stock_history(self, product_id: int, limit: int = 100) -> List[StockHistory]:
        await self.get(product_id)
        stmt = (
            select(StockHistory)
            .where(StockHistory.product_id == product_id)
            .order_by(StockHistory.created_at.desc(), StockHistory.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())
