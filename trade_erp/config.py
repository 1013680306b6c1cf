from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache
from decimal import Decimal
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./trade_erp.db"

    # Database Connection Pool Settings (ignored for SQLite)
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Trade ERP Invoice Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:4200",  # Angular dev server
        "http://localhost:3000",
    ]

    # Invoicing
    DEFAULT_PAYMENT_TERMS_DAYS: int = 30
    ENFORCE_STOCK_AVAILABILITY: bool = True  # Reject sales confirms that would drive stock negative

    # Invoice-level levies for non-filer counterparties (percent of taxable amount)
    NON_FILER_GST_RATE: Decimal = Decimal("0.1")
    INCOME_TAX_RATE: Decimal = Decimal("5.5")

    # Ledger accounts used as the counter side of invoice postings
    SALES_ACCOUNT_ID: str = "SALES"
    PURCHASE_ACCOUNT_ID: str = "PURCHASES"

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
