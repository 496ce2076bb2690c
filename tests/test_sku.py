import pytest

from shop_hub.errors import ConflictError, NotFoundError, ValidationError
from shop_hub.services.sku import SKUGeneratorService


def test_format_helpers():
    assert SKUGeneratorService.is_valid_format("ELEC00001")
    assert SKUGeneratorService.is_valid_format("AB12345")
    assert not SKUGeneratorService.is_valid_format("ELECT00001")
    assert not SKUGeneratorService.is_valid_format("elec00001")
    assert not SKUGeneratorService.is_valid_format("ELEC0001")
    assert SKUGeneratorService.split_sku("ELEC00123") == ("ELEC", 123)
    assert SKUGeneratorService.split_sku("bogus") is None
    assert SKUGeneratorService.format_sku("GEN", 7) == "GEN00007"


async def test_generate_without_category_uses_gen_prefix(db, make_product):
    sku = SKUGeneratorService(db)
    assert await sku.generate() == "GEN00001"

    await make_product()
    await make_product()
    assert await sku.generate() == "GEN00003"


async def test_generate_uses_category_prefix(db, make_category, make_product):
    category = await make_category(prefix="ELEC")
    first = await make_product(category_id=category.id)
    second = await make_product(category_id=category.id)
    assert first.sku == "ELEC00001"
    assert second.sku == "ELEC00002"


async def test_longer_prefix_is_not_counted(db, make_product):
    await make_product(sku="GENX00042")
    await make_product(sku="GEN00005")
    assert await SKUGeneratorService(db).generate() == "GEN00006"


async def test_sequence_limit(db, make_product):
    await make_product(sku="GEN99999")
    with pytest.raises(ConflictError) as exc:
        await SKUGeneratorService(db).generate()
    assert exc.value.code == "SKU_LIMIT_REACHED"


async def test_unknown_category(db):
    with pytest.raises(NotFoundError) as exc:
        await SKUGeneratorService(db).generate(category_id=999)
    assert exc.value.code == "CATEGORY_NOT_FOUND"


async def test_manual_sku_is_normalized_and_checked(db, make_product):
    sku = SKUGeneratorService(db)
    assert await sku.validate_manual(" home00010 ") == "HOME00010"

    with pytest.raises(ValidationError) as exc:
        await sku.validate_manual("HOME-10")
    assert exc.value.code == "INVALID_SKU_FORMAT"

    product = await make_product(sku="HOME00010")
    with pytest.raises(ConflictError) as exc:
        await sku.validate_manual("HOME00010")
    assert exc.value.code == "DUPLICATE_SKU"
    # the product itself may keep its SKU
    assert await sku.validate_manual("HOME00010", exclude_product_id=product.id) == "HOME00010"
