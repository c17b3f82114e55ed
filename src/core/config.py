"""Application configuration using pydantic-settings."""
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./whiteboards.db",
        validation_alias="DATABASE_URL",
    )
    db_pool_size: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")

    # CORS - comma-separated list of allowed origins (stored as string, parsed via property)
    cors_origins_str: str = Field(
        default="http://localhost:5173",
        validation_alias="CORS_ORIGINS",
    )

    # Version storage
    snapshot_interval: int = Field(default=10, ge=1, validation_alias="SNAPSHOT_INTERVAL")
    snapshot_compression_threshold: int = Field(
        default=50_000, ge=0, validation_alias="SNAPSHOT_COMPRESSION_THRESHOLD",
    )
    autosave_element_threshold: int = Field(
        default=2, ge=0, validation_alias="AUTOSAVE_ELEMENT_THRESHOLD",
    )

    # Reconstruction and rollback bounds
    max_reconstruction_depth: int = Field(
        default=10_000, ge=1, validation_alias="MAX_RECONSTRUCTION_DEPTH",
    )
    reconstruction_timeout_seconds: float = Field(
        default=30.0, gt=0, validation_alias="RECONSTRUCTION_TIMEOUT_SECONDS",
    )
    rollback_timeout_seconds: float = Field(
        default=30.0, gt=0, validation_alias="ROLLBACK_TIMEOUT_SECONDS",
    )

    # Comparison cache
    comparison_cache_ttl_hours: int = Field(
        default=24, ge=1, validation_alias="COMPARISON_CACHE_TTL_HOURS",
    )

    @model_validator(mode="after")
    def validate_pool_settings(self) -> "Settings":
        """SQLite does not use a connection pool; reject nonsensical pool sizes elsewhere."""
        if not self.database_url.startswith("sqlite") and self.db_pool_size < 1:
            raise ValueError("DB_POOL_SIZE must be at least 1 for server databases")
        return self

    @property
    def cors_origins(self) -> list[str]:
        """Parse comma-separated CORS origins string into a list."""
        if not self.cors_origins_str:
            return []
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    @property
    def is_sqlite(self) -> bool:
        """True when the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
