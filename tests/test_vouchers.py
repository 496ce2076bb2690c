from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError as SchemaError

from shop_hub.db_models import DiscountType, VoucherStatus
from shop_hub.errors import ConflictError, ValidationError, VoucherError
from shop_hub.models import VoucherIn, VoucherUpdate
from shop_hub.services.vouchers import VoucherService
from shop_hub.utils import utcnow


async def _code_of(coro) -> str:
    with pytest.raises(VoucherError) as exc:
        await coro
    return exc.value.code


async def test_create_normalizes_code(db, make_voucher):
    voucher = await make_voucher(code=" summer24 ")
    assert voucher.code == "SUMMER24"
    assert voucher.usage_count == 0
    assert (await VoucherService(db).find_by_code("Summer24")).id == voucher.id


async def test_duplicate_code(db, make_voucher):
    await make_voucher(code="DUP")
    with pytest.raises(ConflictError) as exc:
        await make_voucher(code="dup")
    assert exc.value.code == "DUPLICATE_VOUCHER"


async def test_invariants(db, make_voucher):
    with pytest.raises(ValidationError):
        await make_voucher(code="TOOMUCH", value="150")
    now = utcnow()
    with pytest.raises(ValidationError):
        await make_voucher(code="BACKWARDS", start_date=now, end_date=now - timedelta(days=1))


async def test_discount_for(db, make_voucher):
    pct = await make_voucher(code="PCT", value="20", max_discount_amount=Decimal("50"))
    fixed = await make_voucher(code="FIX", discount_type=DiscountType.fixed_amount, value="30")
    assert VoucherService.discount_for(pct, Decimal("100")) == Decimal("20.00")
    assert VoucherService.discount_for(pct, Decimal("1000")) == Decimal("50.00")
    assert VoucherService.discount_for(fixed, Decimal("20")) == Decimal("20.00")


async def test_validate_ok(db, make_voucher):
    await make_voucher(code="OK10")
    voucher = await VoucherService(db).validate("ok10", Decimal("100"))
    assert voucher.code == "OK10"


async def test_validate_not_found(db):
    assert await _code_of(VoucherService(db).validate("NOPE", Decimal("100"))) == "VOUCHER_NOT_FOUND"


async def test_validate_inactive(db, make_voucher):
    await make_voucher(code="OFF", status=VoucherStatus.inactive)
    assert await _code_of(VoucherService(db).validate("OFF", Decimal("100"))) == "VOUCHER_INACTIVE"


async def test_validate_window(db, make_voucher):
    now = utcnow()
    await make_voucher(code="LATER", start_date=now + timedelta(days=1), end_date=now + timedelta(days=5))
    await make_voucher(code="GONE", start_date=now - timedelta(days=5), end_date=now - timedelta(days=1))
    service = VoucherService(db)
    assert await _code_of(service.validate("LATER", Decimal("100"))) == "VOUCHER_NOT_YET_ACTIVE"
    assert await _code_of(service.validate("GONE", Decimal("100"))) == "VOUCHER_EXPIRED"


async def test_validate_minimum(db, make_voucher):
    await make_voucher(code="MIN500", minimum_order_amount=Decimal("500"))
    service = VoucherService(db)
    assert await _code_of(service.validate("MIN500", Decimal("499.99"))) == "VOUCHER_MINIMUM_NOT_MET"
    assert (await service.validate("MIN500", Decimal("500"))).code == "MIN500"


async def test_usage_limit(db, make_voucher):
    voucher = await make_voucher(code="ONCE", usage_limit=1, usage_limit_per_customer=None)
    service = VoucherService(db)

    await service.record_usage(voucher)
    assert voucher.usage_count == 1
    assert await _code_of(service.validate("ONCE", Decimal("100"))) == "VOUCHER_USAGE_LIMIT_REACHED"
    # the guarded increment refuses as well
    assert await _code_of(service.record_usage(voucher)) == "VOUCHER_USAGE_LIMIT_REACHED"
    assert len(await service.usage_history(voucher.id)) == 1


async def test_per_customer_limit(db, make_voucher, make_user):
    voucher = await make_voucher(code="PERUSER", usage_limit_per_customer=1)
    alice = await make_user()
    bob = await make_user()
    service = VoucherService(db)

    await service.record_usage(voucher, user_id=alice.id)
    assert await _code_of(service.validate("PERUSER", Decimal("100"), alice.id)) == "VOUCHER_USER_LIMIT_REACHED"
    assert (await service.validate("PERUSER", Decimal("100"), bob.id)).code == "PERUSER"
    # guests are not counted per customer
    assert (await service.validate("PERUSER", Decimal("100"))).code == "PERUSER"


async def test_rules_checked_in_order(db, make_voucher):
    # inactive wins over below-minimum
    await make_voucher(code="BOTH", status=VoucherStatus.inactive, minimum_order_amount=Decimal("1000"))
    assert await _code_of(VoucherService(db).validate("BOTH", Decimal("10"))) == "VOUCHER_INACTIVE"


async def test_update_rechecks_invariants(db, make_voucher):
    voucher = await make_voucher(code="UPD", discount_type=DiscountType.fixed_amount, value="500")
    service = VoucherService(db)
    with pytest.raises(ValidationError):
        await service.update(voucher.id, VoucherUpdate(discount_type=DiscountType.percentage))
    with pytest.raises(ValidationError):
        await service.update(voucher.id, VoucherUpdate())


async def test_update_and_list_active(db, make_voucher):
    voucher = await make_voucher(code="LIST")
    service = VoucherService(db)
    assert [v.code for v in await service.list(active_only=True)] == ["LIST"]

    await service.update(voucher.id, VoucherUpdate(status=VoucherStatus.inactive, description="paused"))
    assert await service.list(active_only=True) == []
    assert voucher.description == "paused"


async def test_delete(db, make_voucher):
    voucher = await make_voucher(code="BYE")
    service = VoucherService(db)
    await service.record_usage(voucher)
    await service.delete(voucher.id)
    assert await service.find_by_code("BYE") is None


def test_voucher_in_requires_positive_value():
    with pytest.raises(SchemaError):
        VoucherIn(
            code="ZERO", name="Zero", discount_type=DiscountType.fixed_amount, discount_value=Decimal("0"),
            start_date=utcnow(), end_date=utcnow() + timedelta(days=1),
        )


def test_voucher_in_rejects_zero_cap():
    with pytest.raises(SchemaError):
        VoucherIn(
            code="NOCAP", name="No cap", discount_type=DiscountType.percentage, discount_value=Decimal("10"),
            max_discount_amount=Decimal("0"), start_date=utcnow(), end_date=utcnow() + timedelta(days=1),
        )
