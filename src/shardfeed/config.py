"""Configuration management using Pydantic Settings."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FieldMapping(BaseModel):
    """Where one feed field takes its value from."""

    source: Literal["product", "variant"] = "product"
    attribute: str


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SHARDFEED_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sharding (changing shard_count requires a full rebuild)
    shard_count: int = Field(default=100, gt=0)
    cache_prefix: str = "shopping-feed"
    cache_ttl_seconds: int = Field(default=3600, ge=60, le=86400)

    # Generation
    batch_size: int = Field(default=100, gt=0)
    generation_timeout_seconds: int = Field(default=3600, gt=0)
    retry_after_seconds: int = 60

    # Key/value store
    store_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    memory_store_max_size: int = 100_000

    # Scheduler
    scheduler_backend: Literal["local", "celery"] = "local"
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"
    celery_task_default_queue: str = "shardfeed"
    schedule_rebuild_enabled: bool = True
    schedule_rebuild_cron: str = "0 * * * *"  # hourly
    schedule_watchdog_interval_seconds: int = 300

    # Catalog data source factory, "module:attribute"
    catalog_source: str = "shardfeed.catalog:InMemoryCatalog"

    # Normalization
    currency: str = "USD"
    weight_unit: Literal["kg", "g", "lb", "oz"] = "kg"
    dimension_unit: Literal["cm", "in"] = "cm"
    field_mappings: dict[str, FieldMapping] = Field(default_factory=dict)

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "console"

    @field_validator("schedule_rebuild_cron")
    @classmethod
    def _check_cron(cls, value: str) -> str:
        if len(value.split()) != 5:
            raise ValueError(f"Invalid cron expression: {value!r}")
        return value


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings (for testing)."""
    global _settings
    _settings = None
