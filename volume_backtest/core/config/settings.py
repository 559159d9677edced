"""
Configuration settings module using Pydantic Settings.

This module defines the application configuration structure using Pydantic models
for type safety, validation, and environment variable loading.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment enumeration."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging level enumeration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log format enumeration."""

    STRUCTURED = "structured"
    JSON = "json"
    SIMPLE = "simple"


class StorageBackend(str, Enum):
    """Where task records and filter cache entries are kept."""

    MEMORY = "memory"
    DATABASE = "database"


DEFAULT_STABLECOINS = [
    "USDT", "USDC", "BUSD", "DAI", "TUSD", "USDP", "USDD", "FRAX",
    "FDUSD", "PYUSD", "LUSD", "GUSD", "SUSD", "HUSD", "OUSD", "USDK",
    "USDN", "UST", "USTC", "CUSD", "DOLA", "USDX", "RSR", "TRIBE",
]


class DatabaseSettings(BaseModel):
    """Database configuration settings."""

    backend: StorageBackend = Field(
        default=StorageBackend.DATABASE,
        description="Storage backend for tasks and filter cache entries"
    )
    url: str = Field(
        default="sqlite:///data/backtest.db",
        description="Database connection URL"
    )
    echo: bool = Field(default=False, description="Echo SQL queries")
    pool_size: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Database connection pool size"
    )
    max_overflow: int = Field(
        default=10,
        ge=0,
        le=100,
        description="Maximum overflow connections"
    )

    model_config = ConfigDict(validate_assignment=True)


class LoggingSettings(BaseModel):
    """Logging configuration settings."""

    level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    file_path: Path = Field(
        default=Path("logs/backtest.log"),
        description="Log file path"
    )
    max_size: str = Field(
        default="10MB",
        description="Maximum log file size"
    )
    backup_count: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Number of backup log files"
    )
    format: LogFormat = Field(
        default=LogFormat.STRUCTURED,
        description="Log format type"
    )

    @field_validator("max_size")
    @classmethod
    def validate_max_size(cls, v: str) -> str:
        """Ensure the size string carries a known unit."""
        value = v.upper().strip()
        if not value.rstrip("B").rstrip("KMGT").replace(".", "", 1).isdigit():
            raise ValueError(f"Invalid size string: {v}")
        return value

    model_config = ConfigDict(validate_assignment=True)


class PerformanceSettings(BaseModel):
    """Worker pool and queue configuration."""

    worker_count: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Number of backtest worker threads"
    )
    queue_max_size: int = Field(
        default=1000,
        ge=1,
        le=100000,
        description="Maximum number of queued tasks"
    )
    poll_interval: float = Field(
        default=0.5,
        gt=0.0,
        le=10.0,
        description="Worker queue poll interval in seconds"
    )
    shutdown_timeout: float = Field(
        default=30.0,
        ge=0.0,
        le=600.0,
        description="Graceful shutdown timeout in seconds"
    )

    model_config = ConfigDict(validate_assignment=True)


class RetrySettings(BaseModel):
    """Retry policy for store and market-data calls."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum attempts per call"
    )
    delay: float = Field(
        default=0.5,
        ge=0.0,
        le=60.0,
        description="Initial delay between attempts in seconds"
    )
    backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Exponential backoff factor"
    )

    model_config = ConfigDict(validate_assignment=True)


class BacktestSettings(BaseModel):
    """Strategy defaults and eligibility configuration."""

    default_limit: int = Field(
        default=15,
        ge=1,
        le=200,
        description="Default number of short positions per bucket"
    )
    default_granularity_hours: int = Field(
        default=8,
        ge=1,
        le=24,
        description="Default bucket size in hours"
    )
    min_volume_threshold: float = Field(
        default=10000.0,
        ge=0.0,
        description="Default minimum 24h quote volume"
    )
    min_history_days: int = Field(
        default=365,
        ge=0,
        le=3650,
        description="Default minimum listing history in days"
    )
    short_amount: float = Field(
        default=10000.0,
        gt=0.0,
        description="Default short-side notional"
    )
    btc_amount: float = Field(
        default=10000.0,
        ge=0.0,
        description="Default long BTC notional"
    )
    quote_asset: str = Field(default="USDT", description="Default quote asset")
    btc_symbol: str = Field(default="BTCUSDT", description="Long leg symbol")
    funding_interval_hours: int = Field(
        default=8,
        ge=1,
        le=24,
        description="Funding settlement interval in hours"
    )
    eligibility_batch_size: int = Field(
        default=15,
        ge=1,
        le=1000,
        description="Symbols evaluated per market-data request"
    )
    stablecoins: List[str] = Field(
        default_factory=lambda: list(DEFAULT_STABLECOINS),
        description="Base assets treated as stablecoins"
    )

    @field_validator("stablecoins")
    @classmethod
    def normalize_stablecoins(cls, v: List[str]) -> List[str]:
        """Upper-case and de-duplicate stablecoin symbols."""
        seen: List[str] = []
        for coin in v:
            coin = coin.strip().upper()
            if coin and coin not in seen:
                seen.append(coin)
        return seen

    model_config = ConfigDict(validate_assignment=True)


class FilterCacheSettings(BaseModel):
    """Filter cache maintenance configuration."""

    cleanup_older_than_days: int = Field(
        default=30,
        ge=1,
        le=3650,
        description="Default age for explicit cache cleanup"
    )

    model_config = ConfigDict(validate_assignment=True)


class Settings(BaseSettings):
    """Main application settings."""

    app_name: str = Field(
        default="Volume Backtest Engine",
        description="Application name"
    )
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )
    debug: bool = Field(default=False, description="Debug mode")

    # Component settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    backtest: BacktestSettings = Field(default_factory=BacktestSettings)
    filter_cache: FilterCacheSettings = Field(default_factory=FilterCacheSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        validate_assignment=True,
        extra="forbid",
    )

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate production-specific settings."""
        if self.environment == Environment.PRODUCTION and self.debug:
            raise ValueError("Debug mode must be disabled in production")
        return self

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def get_database_url(self) -> str:
        """Get the database URL."""
        return self.database.url

    def get_log_level(self) -> str:
        """Get the logging level."""
        return self.logging.level.value

    def get_logs_dir(self) -> Path:
        """Get the logs directory."""
        return self.logging.file_path.parent


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get the process-wide settings instance.

    Settings are read once from the environment and ``.env``; call
    ``get_settings.cache_clear()`` to force a reload.
    """
    return Settings()
