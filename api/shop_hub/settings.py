# shop_hub/settings.py
"""
Shop Hub Settings.
"""
from __future__ import annotations
from decimal import Decimal
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices

class Settings(BaseSettings):
    # =========================================================================
    # File Storage (logs)
    # =========================================================================
    DATA_ROOT: Path = Field(
        default=(Path(__file__).resolve().parents[2] / "shop-data"),
        validation_alias=AliasChoices("DATA_ROOT", "SHOP_DATA_ROOT"),
    )

    # =========================================================================
    # PostgreSQL Database
    # =========================================================================
    DB_HOST: str = Field(default="localhost", validation_alias="DB_HOST")
    DB_PORT: int = Field(default=5432, validation_alias="DB_PORT")
    DB_NAME: str = Field(default="shop_hub", validation_alias="DB_NAME")
    DB_USER: str = Field(default="postgres", validation_alias="DB_USER")
    DB_PASSWORD: str = Field(default="postgres", validation_alias="DB_PASSWORD")

    # Connection pool settings
    DB_POOL_SIZE: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    DB_MAX_OVERFLOW: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")

    # Full URL override (e.g. sqlite+aiosqlite:///./shop.db for local runs)
    DATABASE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "SHOP_DATABASE_URL"),
    )

    # =========================================================================
    # Runtime
    # =========================================================================
    ENVIRONMENT: str = Field(default="production", validation_alias="ENVIRONMENT")
    LOG_LEVEL: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
    )

    # =========================================================================
    # Shop defaults
    # =========================================================================
    DEFAULT_VAT_RATE: Decimal = Field(default=Decimal("7.00"), ge=0, le=100)
    DEFAULT_LOW_STOCK_THRESHOLD: int = Field(default=10, ge=0)
    DEFAULT_SHIPPING_COST: Decimal = Field(default=Decimal("0.00"), ge=0)
    CURRENCY: str = Field(default="THB")

    # =========================================================================
    # Payments (PromptPay QR and bank transfer details shown to customers)
    # =========================================================================
    PROMPTPAY_ID: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PROMPTPAY_ID", "SHOP_PHONE"),
    )
    BANK_NAME: str = Field(default="")
    BANK_ACCOUNT_NUMBER: str = Field(default="")
    BANK_ACCOUNT_NAME: str = Field(default="")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() in ("development", "dev", "local")

settings = Settings()
