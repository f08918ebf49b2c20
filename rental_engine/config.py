from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from decimal import Decimal
from typing import List


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./rental_engine.db",
        alias="DATABASE_URL"
    )
    sql_echo: bool = Field(default=False, alias="SQL_ECHO")

    # Seconds a writer waits on a locked product row / SQLite database lock
    lock_timeout_seconds: float = Field(default=10.0, alias="LOCK_TIMEOUT_SECONDS")

    # ==============================================
    # Booking engine
    # ==============================================
    # Order numbers look like RO2026100001
    order_number_prefix: str = Field(default="RO", alias="ORDER_NUMBER_PREFIX")

    # Flat tax applied to the booking subtotal
    tax_rate: Decimal = Field(default=Decimal("0.10"), alias="TAX_RATE")

    # Retries on lock contention (never on business rejections)
    booking_max_retries: int = Field(default=3, alias="BOOKING_MAX_RETRIES")
    booking_retry_backoff_seconds: float = Field(default=0.05, alias="BOOKING_RETRY_BACKOFF_SECONDS")
    booking_retry_max_backoff_seconds: float = Field(default=1.0, alias="BOOKING_RETRY_MAX_BACKOFF_SECONDS")

    # Rate limiting (slowapi)
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_storage_uri: str = Field(default="memory://", alias="RATE_LIMIT_STORAGE_URI")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # CORS - caller URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
        alias="ALLOWED_ORIGINS"
    )

    @field_validator('tax_rate')
    @classmethod
    def validate_tax_rate(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("TAX_RATE cannot be negative")
        return v

    @field_validator('booking_max_retries')
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("BOOKING_MAX_RETRIES cannot be negative")
        return v

    @field_validator('order_number_prefix')
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        v = v.strip()
        if not v or len(v) > 10:
            raise ValueError("ORDER_NUMBER_PREFIX must be 1-10 characters")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)

        return origins or ["http://localhost:5173"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
