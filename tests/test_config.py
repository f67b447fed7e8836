"""
Tests for application configuration.

Settings must refuse to start with a missing database or weak token secrets.
"""

import pytest

from app.config import ConfigurationError, Settings

STRONG_A = "a" * 32
STRONG_B = "b" * 32
POSTGRES = "postgresql+asyncpg://u:p@localhost:5432/identity"


def _settings(**overrides) -> Settings:
    values = {
        "database_url": POSTGRES,
        "ACCESS_TOKEN_SECRET": STRONG_A,
        "REFRESH_TOKEN_SECRET": STRONG_B,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestCriticalConfig:
    """Tests for fail-fast validation."""

    def test_valid(self):
        """Complete configuration loads."""
        settings = _settings()
        assert settings.read_database_url == POSTGRES

    def test_missing_database(self):
        """An empty database URL is fatal."""
        with pytest.raises(ConfigurationError, match="DATABASE_URL is required"):
            _settings(database_url="")

    def test_non_postgres_database(self):
        """Only PostgreSQL is supported in production."""
        with pytest.raises(ConfigurationError, match="PostgreSQL"):
            _settings(database_url="mysql://u:p@localhost/db")

    @pytest.mark.parametrize("name", ["ACCESS_TOKEN_SECRET", "REFRESH_TOKEN_SECRET"])
    def test_short_secret(self, name: str):
        """Secrets under the minimum length are fatal."""
        with pytest.raises(ConfigurationError, match=f"{name} must be at least"):
            _settings(**{name: "short"})

    def test_identical_secrets(self):
        """Access and refresh tokens must be signed with different keys."""
        with pytest.raises(ConfigurationError, match="must differ"):
            _settings(REFRESH_TOKEN_SECRET=STRONG_A)

    def test_non_positive_ttl(self):
        """Token lifetimes must be positive."""
        with pytest.raises(ConfigurationError, match="ACCESS_TOKEN_EXPIRE_MINUTES"):
            _settings(ACCESS_TOKEN_EXPIRE_MINUTES=0)

    def test_read_replica(self):
        """A configured replica is used for reads."""
        replica = "postgresql+asyncpg://u:p@replica:5432/identity"
        assert _settings(database_read_url=replica).read_database_url == replica


class TestCorsOrigins:
    """Tests for allowed_cors_origins."""

    def test_parses_and_dedupes(self):
        """Comma-separated origins are trimmed and de-duplicated."""
        settings = _settings(cors_origins=" https://a.example, https://b.example,,https://a.example ")
        assert settings.allowed_cors_origins == ["https://a.example", "https://b.example"]

    def test_no_origins_by_default(self):
        """Cross-origin access is off unless origins are configured."""
        assert Settings.model_fields["cors_origins"].default == ""
        assert _settings(cors_origins="").allowed_cors_origins == []

    @pytest.mark.parametrize("origins", ["*", "https://a.example, *"])
    def test_wildcard_rejected(self, origins: str):
        """Credentialed CORS never accepts every origin."""
        with pytest.raises(ConfigurationError, match="explicit origins"):
            _settings(cors_origins=origins)
