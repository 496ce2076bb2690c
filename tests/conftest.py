import os
import tempfile

# must be set before shop_hub.settings is imported
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DATA_ROOT"] = tempfile.mkdtemp(prefix="shop-hub-tests-")
os.environ["ENVIRONMENT"] = "test"

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest

from shop_hub.database import Base, create_engine_for_url, make_session_factory, get_session, close_db
from shop_hub.db_models import User, UserRole, DiscountType
from shop_hub.models import ProductIn, VoucherIn, CategoryIn, CheckoutIn
from shop_hub.services.catalog import CategoryService, ProductService
from shop_hub.services.vouchers import VoucherService
from shop_hub.utils import utcnow


@pytest.fixture
async def engine():
    engine = create_engine_for_url("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    from shop_hub.main import app

    async def _session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = _session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    await close_db()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    async def _make(role: UserRole = UserRole.customer, email: str = None, **kwargs) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"{role.value}{counter['n']}@example.com",
            full_name=kwargs.pop("full_name", f"{role.value.title()} {counter['n']}"),
            role=role,
            **kwargs,
        )
        db.add(user)
        await db.flush()
        return user

    return _make


@pytest.fixture
def make_category(db):
    async def _make(name: str = "Electronics", prefix: str = "ELEC"):
        return await CategoryService(db).create(CategoryIn(name=name, prefix=prefix))

    return _make


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    async def _make(price="100.00", stock: int = 10, vat_rate="7.00", **kwargs):
        counter["n"] += 1
        data = ProductIn(
            name=kwargs.pop("name", f"Product {counter['n']}"),
            price_excluding_vat=Decimal(price),
            vat_rate=Decimal(vat_rate),
            stock_quantity=stock,
            **kwargs,
        )
        return await ProductService(db).create(data)

    return _make


@pytest.fixture
def make_voucher(db):
    async def _make(
        code: str = "SAVE10",
        discount_type: DiscountType = DiscountType.percentage,
        value="10",
        **kwargs,
    ):
        now = utcnow()
        data = VoucherIn(
            code=code,
            name=kwargs.pop("name", f"Voucher {code}"),
            discount_type=discount_type,
            discount_value=Decimal(value),
            start_date=kwargs.pop("start_date", now - timedelta(days=1)),
            end_date=kwargs.pop("end_date", now + timedelta(days=30)),
            **kwargs,
        )
        return await VoucherService(db).create(data)

    return _make


@pytest.fixture
def guest_checkout():
    def _make(**kwargs) -> CheckoutIn:
        fields = dict(
            guest_name="Somchai Jaidee",
            guest_email="somchai@example.com",
            guest_phone="0812345678",
            shipping_address="99/1 Sukhumvit Rd",
            shipping_district="Watthana",
            shipping_province="Bangkok",
            shipping_postal_code="10110",
        )
        fields.update(kwargs)
        return CheckoutIn(**fields)

    return _make

