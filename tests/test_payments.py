import re
from decimal import Decimal

import pytest

from shop_hub.db_models import OrderPaymentStatus, OrderStatus, PaymentMethod, PaymentStatus, UserRole
from shop_hub.errors import ConfigurationError, ConflictError, NotFoundError, ValidationError
from shop_hub.services.cart import CartService
from shop_hub.services.orders import OrderService
from shop_hub.services.payments import PaymentService, crc16_ccitt, format_promptpay_id, promptpay_payload
from shop_hub.settings import settings


@pytest.fixture
async def order(db, make_product, guest_checkout):
    product = await make_product(price="100.00", stock=10)
    carts = CartService(db)
    cart = await carts.add_item(await carts.get_or_create(session_id="sess-1"), product.id, 1)
    return await OrderService(db).create_from_cart(cart, guest_checkout())


@pytest.fixture
async def staff(make_user):
    return await make_user(UserRole.staff)


async def test_upload_slip_creates_pending_payment(db, order):
    payment = await PaymentService(db).upload_slip(order.id, "slips/ord1.jpg", notes="KBank")
    assert payment.status == PaymentStatus.pending
    assert payment.amount == Decimal("107.00")
    assert payment.slip_image_path == "slips/ord1.jpg"
    assert payment.payment_method == PaymentMethod.bank_transfer
    assert payment.receipt_number is None


async def test_reupload_replaces_pending_slip(db, order):
    service = PaymentService(db)
    first = await service.upload_slip(order.id, "slips/a.jpg")
    second = await service.upload_slip(order.id, "slips/b.jpg")
    assert second.id == first.id
    assert second.slip_image_path == "slips/b.jpg"
    assert len(await service.history(order.id)) == 1


async def test_upload_for_missing_order(db):
    with pytest.raises(NotFoundError) as exc:
        await PaymentService(db).upload_slip(404, "slips/x.jpg")
    assert exc.value.code == "ORDER_NOT_FOUND"


async def test_verify_issues_receipt_and_marks_order_paid(db, order, staff):
    service = PaymentService(db)
    payment = await service.upload_slip(order.id, "slips/a.jpg")

    verified = await service.verify(payment.id, staff_user_id=staff.id, notes="matched statement")
    assert verified.status == PaymentStatus.verified
    assert verified.verified_by == staff.id
    assert verified.verified_at is not None
    assert re.match(r"^RCP-\d{8}-00001$", verified.receipt_number)

    refreshed = await OrderService(db).get(order.id)
    assert refreshed.payment_status == OrderPaymentStatus.paid
    assert refreshed.status == OrderStatus.paid


async def test_verified_payment_is_final(db, order, staff):
    service = PaymentService(db)
    payment = await service.upload_slip(order.id, "slips/a.jpg")
    await service.verify(payment.id, staff_user_id=staff.id)

    with pytest.raises(ValidationError) as exc:
        await service.verify(payment.id, staff_user_id=staff.id)
    assert exc.value.code == "INVALID_PAYMENT_TRANSITION"

    with pytest.raises(ValidationError) as exc:
        await service.reject(payment.id, "too late", staff_user_id=staff.id)
    assert exc.value.code == "INVALID_PAYMENT_TRANSITION"

    with pytest.raises(ConflictError) as exc:
        await service.upload_slip(order.id, "slips/again.jpg")
    assert exc.value.code == "PAYMENT_ALREADY_VERIFIED"


async def test_reject_then_new_attempt(db, order, staff):
    service = PaymentService(db)
    payment = await service.upload_slip(order.id, "slips/blurry.jpg")

    rejected = await service.reject(payment.id, "Slip is unreadable", staff_user_id=staff.id)
    assert rejected.status == PaymentStatus.rejected
    assert rejected.rejection_reason == "Slip is unreadable"
    assert (await OrderService(db).get(order.id)).payment_status == OrderPaymentStatus.failed

    retry = await service.upload_slip(order.id, "slips/clear.jpg")
    assert retry.id != payment.id
    assert retry.status == PaymentStatus.pending
    assert [p.id for p in await service.history(order.id)] == [payment.id, retry.id]
    assert (await service.latest_for_order(order.id)).id == retry.id
    assert (await OrderService(db).get(order.id)).payment_status == OrderPaymentStatus.pending


async def test_reject_requires_reason(db, order):
    service = PaymentService(db)
    payment = await service.upload_slip(order.id, "slips/a.jpg")
    with pytest.raises(ValidationError):
        await service.reject(payment.id, "  ")


async def test_confirm_dispatches(db, order, staff):
    service = PaymentService(db)
    payment = await service.upload_slip(order.id, "slips/a.jpg")
    rejected = await service.confirm(payment.id, verified=False, staff_user_id=staff.id, rejection_reason="Wrong amount")
    assert rejected.status == PaymentStatus.rejected

    retry = await service.upload_slip(order.id, "slips/b.jpg")
    verified = await service.confirm(retry.id, verified=True, staff_user_id=staff.id)
    assert verified.status == PaymentStatus.verified


async def test_receipt_numbers_are_sequential(db, make_product, guest_checkout, staff):
    product = await make_product(stock=10)
    carts = CartService(db)
    service = PaymentService(db)
    receipts = []
    for session_id in ("a", "b"):
        cart = await carts.add_item(await carts.get_or_create(session_id=session_id), product.id, 1)
        order = await OrderService(db).create_from_cart(cart, guest_checkout())
        payment = await service.upload_slip(order.id, f"slips/{session_id}.jpg")
        receipts.append((await service.verify(payment.id, staff_user_id=staff.id)).receipt_number)
    assert [r[-5:] for r in receipts] == ["00001", "00002"]


async def test_cancelled_order_takes_no_payment(db, order, staff):
    service = PaymentService(db)
    payment = await service.upload_slip(order.id, "slips/a.jpg")
    await OrderService(db).cancel(order.id)

    with pytest.raises(ValidationError) as exc:
        await service.upload_slip(order.id, "slips/b.jpg")
    assert exc.value.code == "ORDER_CANCELLED"

    with pytest.raises(ValidationError) as exc:
        await service.verify(payment.id, staff_user_id=staff.id)
    assert exc.value.code == "ORDER_CANCELLED"

    # a pending attempt on a cancelled order can still be rejected
    rejected = await service.reject(payment.id, "Order cancelled", staff_user_id=staff.id)
    assert rejected.status == PaymentStatus.rejected
    assert (await OrderService(db).get(order.id)).payment_status == OrderPaymentStatus.failed


async def test_manual_payment(db, order, staff):
    service = PaymentService(db)
    payment = await service.create_manual(order.id, PaymentMethod.cash, notes="Paid at counter")
    assert payment.amount == Decimal("107.00")
    assert payment.slip_image_path is None

    with pytest.raises(ConflictError) as exc:
        await service.create_manual(order.id)
    assert exc.value.code == "PAYMENT_EXISTS"

    await service.reject(payment.id, "Counted short", staff_user_id=staff.id)
    assert (await OrderService(db).get(order.id)).payment_status == OrderPaymentStatus.failed
    again = await service.create_manual(order.id, PaymentMethod.cash, amount=Decimal("107"))
    assert again.status == PaymentStatus.pending
    assert (await OrderService(db).get(order.id)).payment_status == OrderPaymentStatus.pending


async def test_list_and_pending_queue(db, order, staff):
    service = PaymentService(db)
    first = await service.upload_slip(order.id, "slips/a.jpg")
    await service.reject(first.id, "Unreadable", staff_user_id=staff.id)
    second = await service.upload_slip(order.id, "slips/b.jpg")

    assert [p.id for p in await service.pending_queue()] == [second.id]
    items, total = await service.list(status=PaymentStatus.rejected)
    assert (total, [p.id for p in items]) == (1, [first.id])
    items, total = await service.list(order_id=order.id)
    assert total == 2


async def test_delete_payment(db, order):
    service = PaymentService(db)
    payment = await service.upload_slip(order.id, "slips/a.jpg")
    await service.delete(payment.id)
    with pytest.raises(NotFoundError) as exc:
        await service.get(payment.id)
    assert exc.value.code == "PAYMENT_NOT_FOUND"


# ---------------------------------------------------------------------------
# PromptPay
# ---------------------------------------------------------------------------

def test_crc16_check_value():
    assert crc16_ccitt("123456789") == "29B1"


def test_promptpay_payload_for_mobile_number_and_amount():
    payload = promptpay_payload("081-234-5678", Decimal("107"))
    assert payload[:-4] == (
        "000201"
        "010212"
        "2937" "0016A000000677010111" "01130066812345678"
        "5303764"
        "5406107.00"
        "5802TH"
        "6304"
    )
    assert payload[-4:] == crc16_ccitt(payload[:-4])
    assert re.fullmatch(r"[0-9A-F]{4}", payload[-4:])


def test_promptpay_payload_for_tax_id_without_amount():
    payload = promptpay_payload("0105536000000")
    assert payload.startswith("000201010211" "2937" "0016A000000677010111" "02130105536000000")
    assert "5406" not in payload
    assert payload[-8:-4] == "6304"
    # 66-prefixed mobile numbers encode the same as local ones
    assert promptpay_payload("66812345678")[:-4] == promptpay_payload("0812345678")[:-4]


def test_promptpay_rejects_unknown_id_format():
    with pytest.raises(ValidationError) as exc:
        promptpay_payload("12345")
    assert exc.value.code == "INVALID_PROMPTPAY_ID"


def test_format_promptpay_id():
    assert format_promptpay_id("0812345678") == "081-234-5678"
    assert format_promptpay_id("66812345678") == "+66 81-234-5678"
    assert format_promptpay_id("0105536000000") == "0105536000000"


async def test_promptpay_for_order(db, order, monkeypatch):
    monkeypatch.setattr(settings, "PROMPTPAY_ID", "0812345678")
    monkeypatch.setattr(settings, "BANK_NAME", "Kasikornbank")
    data = await PaymentService(db).promptpay_for_order(order.id)

    assert data["order_number"] == order.order_number
    assert data["amount"] == Decimal("107.00")
    assert data["promptpay_id"] == "081-234-5678"
    assert data["payload"] == promptpay_payload("0812345678", Decimal("107.00"))
    assert data["bank_account"]["bank_name"] == "Kasikornbank"


async def test_promptpay_needs_configuration(db, order, monkeypatch):
    service = PaymentService(db)
    monkeypatch.setattr(settings, "PROMPTPAY_ID", None)
    with pytest.raises(ConfigurationError) as exc:
        await service.promptpay_for_order(order.id)
    assert exc.value.code == "PROMPTPAY_NOT_CONFIGURED"

    monkeypatch.setattr(settings, "PROMPTPAY_ID", "12-34")
    with pytest.raises(ConfigurationError) as exc:
        await service.promptpay_for_order(order.id)
    assert exc.value.code == "INVALID_PROMPTPAY_ID"


async def test_no_promptpay_for_paid_order(db, order, staff, monkeypatch):
    monkeypatch.setattr(settings, "PROMPTPAY_ID", "0812345678")
    service = PaymentService(db)
    payment = await service.upload_slip(order.id, "slips/a.jpg")
    await service.verify(payment.id, staff_user_id=staff.id)

    with pytest.raises(ConflictError) as exc:
        await service.promptpay_for_order(order.id)
    assert exc.value.code == "PAYMENT_ALREADY_VERIFIED"
