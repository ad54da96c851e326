from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./distledger.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Distributor Ledger"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Payment ledger
    PAYMENT_TOLERANCE: Decimal = Decimal("0.01")  # Rupees accepted above balance
    DEFAULT_PAYMENT_METHOD: str = "CASH"

    # Dispatch classification
    SMALL_ORDER_MAX_PRODUCTS: int = 3  # Distinct products at or below = small
    SMALL_ORDER_MAX_QUANTITY: int = 5  # Total units at or below = small

    # Auto-dispatch priority tiers (by invoice total)
    PRIORITY_HIGH_THRESHOLD: Decimal = Decimal("50000")  # -> priority 3
    PRIORITY_MEDIUM_THRESHOLD: Decimal = Decimal("20000")  # -> priority 2
    COMBINED_DISPATCH_DEFAULT_PRIORITY: int = 5

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
