"""Tests for application configuration."""
import pytest
from pydantic import ValidationError

from core.config import Settings


class TestCorsOriginsParsing:
    """Tests for CORS origins parsing from environment variables."""

    def test_parse_single_origin_string(self) -> None:
        """Single origin string is parsed correctly."""
        settings = Settings(
            _env_file=None,
            database_url="postgresql+asyncpg://test",
            CORS_ORIGINS="http://localhost:5173",
        )
        assert settings.cors_origins == ["http://localhost:5173"]

    def test_parse_multiple_origins_with_whitespace(self) -> None:
        """Whitespace around comma-separated origins is stripped."""
        settings = Settings(
            _env_file=None,
            database_url="postgresql+asyncpg://test",
            CORS_ORIGINS="  http://localhost:5173 , https://example.com  ",
        )
        assert settings.cors_origins == [
            "http://localhost:5173",
            "https://example.com",
        ]

    def test_parse_empty_string(self) -> None:
        """Empty string results in empty list."""
        settings = Settings(
            _env_file=None,
            database_url="postgresql+asyncpg://test",
            CORS_ORIGINS="",
        )
        assert settings.cors_origins == []

    def test_parse_trailing_comma(self) -> None:
        """Trailing comma is handled (empty entries filtered)."""
        settings = Settings(
            _env_file=None,
            database_url="postgresql+asyncpg://test",
            CORS_ORIGINS="http://localhost:5173,",
        )
        assert settings.cors_origins == ["http://localhost:5173"]


class TestVersionStorageSettings:
    """Tests for versioning defaults and overrides."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Defaults match the documented storage policy."""
        for name in (
            "SNAPSHOT_INTERVAL",
            "SNAPSHOT_COMPRESSION_THRESHOLD",
            "AUTOSAVE_ELEMENT_THRESHOLD",
            "MAX_RECONSTRUCTION_DEPTH",
            "COMPARISON_CACHE_TTL_HOURS",
        ):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None, database_url="sqlite+aiosqlite:///:memory:")

        assert settings.snapshot_interval == 10
        assert settings.snapshot_compression_threshold == 50_000
        assert settings.autosave_element_threshold == 2
        assert settings.max_reconstruction_depth == 10_000
        assert settings.comparison_cache_ttl_hours == 24

    def test_read_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Settings are read from their environment variables."""
        monkeypatch.setenv("SNAPSHOT_INTERVAL", "25")
        monkeypatch.setenv("ROLLBACK_TIMEOUT_SECONDS", "5.5")
        settings = Settings(_env_file=None, database_url="sqlite+aiosqlite:///:memory:")

        assert settings.snapshot_interval == 25
        assert settings.rollback_timeout_seconds == 5.5

    def test_snapshot_interval_must_be_positive(self) -> None:
        """A zero snapshot interval is rejected."""
        with pytest.raises(ValidationError):
            Settings(
                _env_file=None,
                database_url="sqlite+aiosqlite:///:memory:",
                SNAPSHOT_INTERVAL=0,
            )


class TestDatabaseSettings:
    """Tests for database-related settings."""

    def test_is_sqlite(self) -> None:
        """is_sqlite reflects the database URL scheme."""
        assert Settings(_env_file=None, database_url="sqlite+aiosqlite:///x.db").is_sqlite
        assert not Settings(_env_file=None, database_url="postgresql+asyncpg://db").is_sqlite

    def test_pool_size_must_be_positive_for_server_databases(self) -> None:
        """A zero pool size is rejected for PostgreSQL."""
        with pytest.raises(ValidationError, match="DB_POOL_SIZE"):
            Settings(
                _env_file=None,
                database_url="postgresql+asyncpg://db",
                DB_POOL_SIZE=0,
            )

    def test_pool_size_ignored_for_sqlite(self) -> None:
        """SQLite accepts any pool size since it doesn't pool."""
        settings = Settings(
            _env_file=None,
            database_url="sqlite+aiosqlite:///x.db",
            DB_POOL_SIZE=0,
        )
        assert settings.db_pool_size == 0
