from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str | None = None
    database_url: str = "sqlite+aiosqlite:///./entitlements.db"

    # Payment provider selection
    payment_provider: Literal["mercadopago", "stripe"] = "mercadopago"
    payment_provider_timeout_seconds: float = 10.0

    # Mercado Pago configuration
    mercadopago_access_token: str = ""
    mercadopago_api_base_url: str = "https://api.mercadopago.com"
    mercadopago_notification_url: str | None = None

    # Stripe configuration
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # Purchasable asset
    asset_title: str = "E-book"
    asset_sku: str = "ebook"
    asset_price: Decimal = Decimal("129.00")
    asset_currency: str = "BRL"
    asset_storage_bucket: str | None = None
    asset_storage_key: str = "ebook.pdf"
    asset_storage_region: str | None = None
    asset_storage_endpoint: str | None = None
    asset_storage_force_path_style: bool = False
    asset_grant_ttl_seconds: int = 60 * 60 * 2

    # Buyer-facing return page (order id + identity appended)
    access_page_url: str = "http://localhost:3000/download"

    # Operator API security
    operator_api_key: str = ""

    # Pending order reconciliation sweep
    pending_reconciliation_worker_enabled: bool = False
    pending_reconciliation_interval_seconds: int = 300
    pending_reconciliation_batch_size: int = 25
    pending_reconciliation_min_age_seconds: int = 120

    @field_validator("asset_currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: object) -> str:
        if value is None:
            return "BRL"
        return str(value).strip().upper()

    @field_validator("asset_grant_ttl_seconds")
    @classmethod
    def _validate_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("asset_grant_ttl_seconds must be positive")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
