# shop_hub/routers/vouchers.py
"""
Vouchers Router - voucher administration (staff).
"""
from __future__ import annotations
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.database import get_session
from shop_hub.identity import Identity, require_staff, require_admin
from shop_hub.models import VoucherIn, VoucherUpdate, VoucherOut, VoucherUsageOut
from shop_hub.services.vouchers import VoucherService

router = APIRouter(prefix="/api/vouchers", tags=["Vouchers"])


@router.get("", response_model=List[VoucherOut])
async def list_vouchers(
    active_only: bool = Query(False),
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    vouchers = await VoucherService(db).list(active_only=active_only)
    return [VoucherOut.model_validate(v) for v in vouchers]


@router.get("/{voucher_id}", response_model=VoucherOut)
async def get_voucher(
    voucher_id: int,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    return VoucherOut.model_validate(await VoucherService(db).get(voucher_id))


@router.get("/{voucher_id}/usage", response_model=List[VoucherUsageOut])
async def voucher_usage(
    voucher_id: int,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    usages = await VoucherService(db).usage_history(voucher_id)
    return [VoucherUsageOut.model_validate(u) for u in usages]


@router.post("", response_model=VoucherOut, status_code=201)
async def create_voucher(
    request: VoucherIn,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    return VoucherOut.model_validate(await VoucherService(db).create(request))


@router.put("/{voucher_id}", response_model=VoucherOut)
async def update_voucher(
    voucher_id: int,
    request: VoucherUpdate,
    identity: Identity = Depends(require_staff),
    db: AsyncSession = Depends(get_session),
):
    return VoucherOut.model_validate(await VoucherService(db).update(voucher_id, request))


@router.delete("/{voucher_id}", status_code=204)
async def delete_voucher(
    voucher_id: int,
    identity: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_session),
):
    await VoucherService(db).delete(voucher_id)
