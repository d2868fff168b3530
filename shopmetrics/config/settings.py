"""
Shop Metrics Engine
Centralized Configuration Management

Pydantic settings with environment variable support, validation, and type safety.
"""

from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Aggregate store database configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="shop_metrics", description="Database name")
    user: str = Field(default="shopmetrics", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(
        default=None,
        alias="DATABASE_URL",
        description="Full async SQLAlchemy URL (overrides host/port)",
    )

    @property
    def async_url(self) -> str:
        """Async database URL, asyncpg unless DATABASE_URL says otherwise"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class ShopifySettings(BaseSettings):
    """Upstream Admin API configuration"""

    model_config = SettingsConfigDict(env_prefix="SHOPIFY_")

    api_version: str = Field(default="2024-10", description="Admin GraphQL API version")
    request_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    rate_limit_per_second: float = Field(default=10.0, description="Upstream page requests per second")
    rate_limit_burst: int = Field(default=1, description="Token bucket burst size")


class ReconciliationSettings(BaseSettings):
    """Historical rebuild configuration"""

    model_config = SettingsConfigDict(env_prefix="RECONCILE_")

    lookback_years: int = Field(default=3, description="Order history window in years")
    order_page_size: int = Field(default=100, description="Orders per upstream page")
    customer_page_size: int = Field(default=250, description="Customers per upstream page")
    line_item_page_size: int = Field(default=50, description="Line items fetched per order")


class EventThresholdSettings(BaseSettings):
    """Thresholds for the notable-event feed (in shop currency)"""

    model_config = SettingsConfigDict(env_prefix="EVENT_")

    large_order_amount: float = Field(default=500.0, description="Orders above this log a large_order event")
    significant_refund_amount: float = Field(default=100.0, description="Refunds above this log a significant_refund event")


class AnalyticsSettings(BaseSettings):
    """Insight engine configuration"""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_")

    max_insights: int = Field(default=10, description="Insights kept per report")
    top_products: int = Field(default=10, description="Products listed per report")
    anomaly_z_threshold: float = Field(default=2.0, description="Z-score threshold for daily anomalies")
    anomaly_min_points: int = Field(default=3, description="Minimum daily points for anomaly detection")
    default_period: str = Field(default="last30days", description="Report period when none is given")


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")

    enable_metrics_endpoint: bool = Field(default=True, description="Expose /metrics for Prometheus")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="shop-metrics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")
    cors_origins: List[str] = Field(default=["*"], description="Allowed CORS origins")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    shopify: ShopifySettings = Field(default_factory=ShopifySettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)
    events: EventThresholdSettings = Field(default_factory=EventThresholdSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()


settings = get_settings()
