# shop_hub/routers/categories.py
"""
Categories Router - product categories and their SKU prefixes.
"""
from __future__ import annotations
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.database import get_session
from shop_hub.identity import Identity, require_admin
from shop_hub.models import CategoryIn, CategoryUpdate, CategoryOut
from shop_hub.services.catalog import CategoryService

router = APIRouter(prefix="/api/categories", tags=["Categories"])


@router.get("", response_model=List[CategoryOut])
async def list_categories(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_session),
):
    categories = await CategoryService(db).list(active_only=active_only)
    return [CategoryOut.model_validate(c) for c in categories]


@router.get("/{category_id}", response_model=CategoryOut)
async def get_category(category_id: int, db: AsyncSession = Depends(get_session)):
    return CategoryOut.model_validate(await CategoryService(db).get(category_id))


@router.post("", response_model=CategoryOut, status_code=201)
async def create_category(
    request: CategoryIn,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return CategoryOut.model_validate(await CategoryService(db).create(request))


@router.put("/{category_id}", response_model=CategoryOut)
async def update_category(
    category_id: int,
    request: CategoryUpdate,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    return CategoryOut.model_validate(await CategoryService(db).update(category_id, request))
