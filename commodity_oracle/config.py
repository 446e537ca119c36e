"""
Configuration settings for the commodity oracle service.
Uses Pydantic Settings for type-safe environment variable loading.
"""
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # APP
    # ==========================================================================
    app_name: str = Field(default="Commodity Oracle API")
    version: str = Field(default="1.0.0")
    environment: str = Field(default="development")
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
    )

    # ==========================================================================
    # PRICE SOURCES
    # ==========================================================================
    alpha_vantage_api_key: str = Field(default="", description="Alpha Vantage key (source skipped when empty)")
    alpha_vantage_base_url: str = Field(default="https://www.alphavantage.co")
    alpha_vantage_rate_limit_rps: float = Field(default=1.0, ge=0.1, le=50.0)

    world_bank_base_url: str = Field(default="https://api.worldbank.org/v2")
    world_bank_rate_limit_rps: float = Field(default=5.0, ge=0.1, le=50.0)

    # Static table of last-resort prices, off by default so lookup failures surface
    static_fallback_enabled: bool = Field(default=False)

    api_timeout_seconds: float = Field(default=10.0, ge=0.5, le=120.0)
    retry_max_attempts: int = Field(default=3, ge=1, le=10)

    # ==========================================================================
    # PRICE CACHE
    # ==========================================================================
    price_cache_ttl_seconds: float = Field(default=300.0, ge=0.0, description="Freshness window (5 minutes)")
    price_fetch_timeout_seconds: float = Field(default=15.0, ge=0.1, le=300.0)
    max_concurrency: int = Field(default=4, ge=1, le=50, description="Parallel upstream price fetches")
    price_history_size: int = Field(default=90, ge=1, le=10000)
    price_history_seed_points: int = Field(
        default=30, ge=0, le=1000, description="Upstream history points merged in on first use (0 disables)"
    )
    price_failure_backoff_seconds: float = Field(
        default=30.0, ge=0.0, description="Serve stale without calling upstream for this long after a failure"
    )

    # ==========================================================================
    # FORECASTING
    # ==========================================================================
    forecaster: Literal["trend", "claude"] = Field(default="trend")
    narrator_enabled: bool = Field(default=True)
    forecast_timeout_seconds: float = Field(default=20.0, ge=0.1, le=300.0)
    narrative_timeout_seconds: float = Field(default=20.0, ge=0.1, le=300.0)

    # Stored in the ledger database (or in memory with LEDGER_BACKEND=memory)
    prediction_store_enabled: bool = Field(default=True)
    prediction_store_timeout_seconds: float = Field(default=5.0, ge=0.1, le=120.0)

    anthropic_api_key: str = Field(default="")
    claude_model: str = Field(default="claude-sonnet-4-20250514")
    claude_max_tokens: int = Field(default=1024, ge=64, le=8192)

    # ==========================================================================
    # LEDGER DATABASE
    # ==========================================================================
    postgres_host: str = Field(default="localhost")
    postgres_port: int = Field(default=5432)
    postgres_db: str = Field(default="commodity_oracle")
    postgres_user: str = Field(default="postgres")
    postgres_password: str = Field(default="")

    ledger_database_url: str = Field(default="", description="Overrides the postgres_* parts when set")
    ledger_backend: Literal["sql", "memory"] = Field(default="sql")
    ledger_timeout_seconds: float = Field(default=5.0, ge=0.1, le=120.0)
    db_pool_size: int = Field(default=5, ge=1, le=100)
    db_pool_max_overflow: int = Field(default=10, ge=0, le=100)

    # Served by /staking/aggregate when the ledger store is unreachable
    fallback_total_value_locked: Decimal = Field(default=Decimal("2400000"))
    fallback_active_stakers: int = Field(default=1194)
    fallback_average_apy: Decimal = Field(default=Decimal("12.4"))
    fixed_apy: Decimal = Field(default=Decimal("12.4"))

    # ==========================================================================
    # CHAIN
    # ==========================================================================
    rpc_url: str = Field(default="https://rpc-amoy.polygon.technology")
    rpc_timeout_seconds: float = Field(default=10.0, ge=0.1, le=120.0)
    usdc_address: str = Field(default="")
    prediction_market_address: str = Field(default="")
    usdc_decimals: int = Field(default=6, ge=0, le=36)
    min_allowance_usdc: int = Field(default=1000, ge=0)

    # ==========================================================================
    # LOGGING
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")

    # ==========================================================================
    # DERIVED PROPERTIES
    # ==========================================================================

    @property
    def database_url_async(self) -> str:
        """Async database URL for SQLAlchemy (asyncpg driver)."""
        if self.ledger_database_url:
            return self.ledger_database_url
        password = f":{self.postgres_password}" if self.postgres_password else ""
        return (
            f"postgresql+asyncpg://{self.postgres_user}{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def min_allowance_units(self) -> int:
        """Minimum allowance in the token's smallest unit."""
        return self.min_allowance_usdc * 10 ** self.usdc_decimals


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
