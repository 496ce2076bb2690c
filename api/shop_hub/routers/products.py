# shop_hub/routers/products.py
"""
Products Router - catalog browsing and product administration.
"""
from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.database import get_session
from shop_hub.db_models import ProductStatus
from shop_hub.identity import Identity, require_staff, require_admin
from shop_hub.models import (
    ProductIn, ProductUpdate, ProductOut, ProductListOut,
    StockAdjustIn, StockHistoryOut,
)
from shop_hub.services.catalog import ProductService
from shop_hub.services.sku import SKUGeneratorService

router = APIRouter(prefix="/api/products", tags=["Products"])


# ============================================================================
# Public
# ============================================================================

@router.get("", response_model=ProductListOut)
async def list_products(
    search: Optional[str] = Query(None),
    category_id: Optional[int] = Query(None),
    status: Optional[ProductStatus] = Query(None),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc|ASC|DESC)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    """List products with search, category/status filter, sorting and paging."""
    products, total = await ProductService(db).list(
        search=search,
        category_id=category_id,
        status=status,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return ProductListOut(
        items=[ProductOut.model_validate(p) for p in products],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/alerts/low-stock", response_model=List[ProductOut])
async def low_stock_products(
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    """Active products at or below their low-stock threshold."""
    return [ProductOut.model_validate(p) for p in await ProductService(db).low_stock()]


@router.get("/sku/{sku}", response_model=ProductOut)
async def get_product_by_sku(sku: str, db: AsyncSession = Depends(get_session)):
    return ProductOut.model_validate(await ProductService(db).get_by_sku(sku))


@router.get("/{product_id}", response_model=ProductOut)
async def get_product(product_id: int, db: AsyncSession = Depends(get_session)):
    return ProductOut.model_validate(await ProductService(db).get(product_id))


# ============================================================================
# Administration
# ============================================================================

@router.post("/generate-sku")
async def generate_sku(
    category_id: Optional[int] = Query(None),
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Preview the next SKU for a category (nothing is reserved)."""
    sku = await SKUGeneratorService(db).generate(category_id)
    return {"sku": sku}


@router.post("", response_model=ProductOut, status_code=201)
async def create_product(
    request: ProductIn,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """
    Create a product.

    SKU is generated from the category prefix unless one is supplied;
    vat_amount and price_including_vat are always derived.
    """
    product = await ProductService(db).create(request, user_id=identity.user_id)
    return ProductOut.model_validate(product)


@router.put("/{product_id}", response_model=ProductOut)
async def update_product(
    product_id: int,
    request: ProductUpdate,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    product = await ProductService(db).update(product_id, request)
    return ProductOut.model_validate(product)


@router.delete("/{product_id}", response_model=ProductOut)
async def delete_product(
    product_id: int,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    """Soft delete (status -> inactive)."""
    product = await ProductService(db).delete(product_id)
    return ProductOut.model_validate(product)


# ============================================================================
# Stock
# ============================================================================

@router.post("/{product_id}/stock", response_model=ProductOut)
async def adjust_stock(
    product_id: int,
    request: StockAdjustIn,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    product = await ProductService(db).adjust_stock(
        product_id,
        request.quantity_change,
        change_type=request.change_type,
        notes=request.notes,
        user_id=identity.user_id,
    )
    return ProductOut.model_validate(product)


@router.get("/{product_id}/stock-history", response_model=List[StockHistoryOut])
async def stock_history(
    product_id: int,
    limit: int = Query(100, ge=1, le=1000),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    rows = await ProductService(db).stock_history(product_id, limit=limit)
    return [StockHistoryOut.model_validate(r) for r in rows]
