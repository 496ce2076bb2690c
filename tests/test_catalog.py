from decimal import Decimal

import pytest

from shop_hub.db_models import ProductStatus, StockChangeType
from shop_hub.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from shop_hub.models import CategoryIn, CategoryUpdate, ProductIn, ProductUpdate
from shop_hub.services.catalog import CategoryService, ProductService


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

async def test_category_prefix_is_validated(db, make_category):
    service = CategoryService(db)
    category = await service.create(CategoryIn(name="Books", prefix="bk"))
    assert category.prefix == "BK"

    with pytest.raises(ValidationError) as exc:
        await service.create(CategoryIn(name="Toys", prefix="TOYS1"))
    assert exc.value.code == "INVALID_PREFIX"

    with pytest.raises(ConflictError) as exc:
        await service.create(CategoryIn(name="Bikes", prefix="BK"))
    assert exc.value.code == "DUPLICATE_PREFIX"

    with pytest.raises(ConflictError) as exc:
        await service.create(CategoryIn(name="Books"))
    assert exc.value.code == "DUPLICATE_CATEGORY"


async def test_category_update(db, make_category):
    service = CategoryService(db)
    category = await make_category(name="Garden", prefix="GDN")
    updated = await service.update(category.id, CategoryUpdate(prefix="GARD", is_active=False))
    assert updated.prefix == "GARD"
    assert updated.is_active is False
    assert [c.name for c in await service.list(active_only=True)] == []


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

async def test_create_derives_vat_fields(db):
    product = await ProductService(db).create(ProductIn(
        name="Kettle", price_excluding_vat=Decimal("100"), stock_quantity=5,
    ))
    assert product.sku == "GEN00001"
    assert product.vat_rate == Decimal("7.00")
    assert product.vat_amount == Decimal("7.00")
    assert product.price_including_vat == Decimal("107.00")
    assert product.low_stock_threshold == 10
    assert product.status == ProductStatus.active


async def test_create_records_initial_stock(db, make_product):
    product = await make_product(stock=12)
    history = await ProductService(db).stock_history(product.id)
    assert len(history) == 1
    assert history[0].change_type == StockChangeType.restock
    assert (history[0].quantity_before, history[0].quantity_after) == (0, 12)


async def test_create_without_stock_is_out_of_stock(db, make_product):
    product = await make_product(stock=0)
    assert product.status == ProductStatus.out_of_stock
    assert await ProductService(db).stock_history(product.id) == []


async def test_update_recomputes_prices(db, make_product):
    product = await make_product(price="100.00")
    updated = await ProductService(db).update(product.id, ProductUpdate(
        price_excluding_vat=Decimal("200.00"), vat_rate=Decimal("10"),
    ))
    assert updated.vat_amount == Decimal("20.00")
    assert updated.price_including_vat == Decimal("220.00")


async def test_update_can_clear_optional_fields(db, make_product):
    product = await make_product(description="Old text", cost_price_excluding_vat=Decimal("40"))
    updated = await ProductService(db).update(product.id, ProductUpdate(description=None, name="Renamed"))
    assert updated.description is None
    assert updated.name == "Renamed"
    assert updated.cost_price_excluding_vat == Decimal("40.00")


async def test_delete_is_soft(db, make_product):
    product = await make_product()
    service = ProductService(db)
    await service.delete(product.id)
    assert (await service.get(product.id)).status == ProductStatus.inactive


async def test_get_missing_product(db):
    with pytest.raises(NotFoundError) as exc:
        await ProductService(db).get(12345)
    assert exc.value.code == "PRODUCT_NOT_FOUND"


async def test_list_filters_and_paginates(db, make_product):
    for name in ("Red mug", "Blue mug", "Teapot"):
        await make_product(name=name)
    service = ProductService(db)

    items, total = await service.list(search="mug", sort_by="name", sort_order="asc")
    assert total == 2
    assert [p.name for p in items] == ["Blue mug", "Red mug"]

    items, total = await service.list(page=2, limit=2)
    assert total == 3
    assert len(items) == 1


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------

async def test_adjust_stock_writes_history(db, make_product):
    product = await make_product(stock=10)
    service = ProductService(db)

    updated = await service.adjust_stock(product.id, -4, notes="Damaged")
    assert updated.stock_quantity == 6

    latest = (await service.stock_history(product.id))[0]
    assert latest.change_type == StockChangeType.adjustment
    assert latest.quantity_change == -4
    assert (latest.quantity_before, latest.quantity_after) == (10, 6)
    assert latest.reference_type == "manual"


async def test_stock_never_goes_negative(db, make_product):
    product = await make_product(stock=3)
    service = ProductService(db)
    with pytest.raises(InsufficientStockError) as exc:
        await service.adjust_stock(product.id, -5)
    assert exc.value.code == "INSUFFICIENT_STOCK"
    assert exc.value.details == {"requested": 5, "available": 3}
    assert (await service.get(product.id)).stock_quantity == 3


async def test_zero_change_is_rejected(db, make_product):
    product = await make_product()
    with pytest.raises(ValidationError):
        await ProductService(db).adjust_stock(product.id, 0)


async def test_stock_status_follows_quantity(db, make_product):
    product = await make_product(stock=2)
    service = ProductService(db)

    emptied = await service.adjust_stock(product.id, -2)
    assert emptied.status == ProductStatus.out_of_stock

    restocked = await service.adjust_stock(product.id, 5, change_type=StockChangeType.restock)
    assert restocked.status == ProductStatus.active
    assert restocked.stock_quantity == 5


async def test_inactive_product_stays_inactive_on_restock(db, make_product):
    product = await make_product(stock=1)
    service = ProductService(db)
    await service.delete(product.id)
    restocked = await service.adjust_stock(product.id, 10, change_type=StockChangeType.restock)
    assert restocked.status == ProductStatus.inactive


async def test_low_stock(db, make_product):
    low = await make_product(name="Low", stock=3, low_stock_threshold=5)
    await make_product(name="Plenty", stock=50, low_stock_threshold=5)
    edge = await make_product(name="Edge", stock=5, low_stock_threshold=5)

    products = await ProductService(db).low_stock()
    assert [p.id for p in products] == [low.id, edge.id]
    assert low.is_low_stock
