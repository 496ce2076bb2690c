# shop_hub/services/sku.py
"""
SKU Generator Service.

Handles:
- SKU format validation: [PREFIX][NNNNN], 2-4 uppercase letters + 5 digits
- Category prefix lookup (falls back to GEN)
- Sequential numbering per prefix (max existing + 1, up to 99999)
- Uniqueness checks
"""
from __future__ import annotations
import re
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.db_models import Product, ProductCategory
from shop_hub.errors import ConflictError, NotFoundError, ValidationError


class SKUGeneratorService:
    """Service for generating and validating product SKUs."""

    DEFAULT_PREFIX = "GEN"
    SEQUENCE_LENGTH = 5
    MAX_SEQUENCE = 99999
    SKU_PATTERN = re.compile(r"^([A-Z]{2,4})(\d{5})$")
    PREFIX_PATTERN = re.compile(r"^[A-Z]{2,4}$")

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Format
    # =========================================================================

    @classmethod
    def is_valid_format(cls, sku: Optional[str]) -> bool:
        return isinstance(sku, str) and bool(cls.SKU_PATTERN.match(sku))

    @classmethod
    def is_valid_prefix(cls, prefix: Optional[str]) -> bool:
        return isinstance(prefix, str) and bool(cls.PREFIX_PATTERN.match(prefix))

    @classmethod
    def split_sku(cls, sku: str) -> Optional[Tuple[str, int]]:
        """'ELEC00123' -> ('ELEC', 123); None when the format does not match."""
        m = cls.SKU_PATTERN.match(sku or "")
        if not m:
            return None
        return m.group(1), int(m.group(2))

    @classmethod
    def format_sku(cls, prefix: str, sequence: int) -> str:
        return f"{prefix}{sequence:0{cls.SEQUENCE_LENGTH}d}"

    # =========================================================================
    # Generation
    # =========================================================================

    async def prefix_for_category(self, category_id: Optional[int]) -> str:
        if not category_id:
            return self.DEFAULT_PREFIX
        category = await self.db.get(ProductCategory, category_id)
        if category is None:
            raise NotFoundError(f"Category not found: {category_id}", code="CATEGORY_NOT_FOUND")
        return category.prefix or self.DEFAULT_PREFIX

    async def max_sequence(self, prefix: str) -> int:
        """Highest sequence already used for `prefix` (0 when none)."""
        stmt = select(Product.sku).where(Product.sku.like(f"{prefix}%"))
        result = await self.db.execute(stmt)

        highest = 0
        for sku in result.scalars():
            parts = self.split_sku(sku)
            # 'GEN' must not pick up 'GENX00001'
            if parts and parts[0] == prefix:
                highest = max(highest, parts[1])
        return highest

    async def next_sku(self, prefix: str) -> str:
        sequence = await self.max_sequence(prefix) + 1
        if sequence > self.MAX_SEQUENCE:
            raise ConflictError(
                f"SKU sequence for prefix {prefix} reached its limit ({self.MAX_SEQUENCE})",
                code="SKU_LIMIT_REACHED",
            )
        return self.format_sku(prefix, sequence)

    async def generate(self, category_id: Optional[int] = None) -> str:
        prefix = await self.prefix_for_category(category_id)
        sku = await self.next_sku(prefix)
        await self.ensure_unique(sku)
        return sku

    # =========================================================================
    # Validation
    # =========================================================================

    async def is_unique(self, sku: str, exclude_product_id: Optional[int] = None) -> bool:
        stmt = select(Product.id).where(Product.sku == sku)
        if exclude_product_id is not None:
            stmt = stmt.where(Product.id != exclude_product_id)
        result = await self.db.execute(stmt)
        return result.first() is None

    async def ensure_unique(self, sku: str, exclude_product_id: Optional[int] = None) -> None:
        if not await self.is_unique(sku, exclude_product_id):
            raise ConflictError(f"SKU already exists: {sku}", code="DUPLICATE_SKU")

    async def validate_manual(self, sku: str, exclude_product_id: Optional[int] = None) -> str:
        """Validate a caller-supplied SKU and return it normalized."""
        sku = (sku or "").strip().upper()
        if not self.is_valid_format(sku):
            raise ValidationError(
                f"Invalid SKU format: {sku!r}, expected [PREFIX][00001-99999]",
                code="INVALID_SKU_FORMAT",
            )
        await self.ensure_unique(sku, exclude_product_id)
        return sku
