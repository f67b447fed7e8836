"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_SECRET_LENGTH = 32


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = True

    # Aggregation queries (channel profile, watch history) are bounded by this deadline
    query_timeout_seconds: float = 5.0

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "VidStream Identity API"
    api_version: str = "0.1.0"
    api_description: str = "Accounts, sessions and channel relationships for VidStream"
    cors_origins: str = ""  # Comma-separated list; "*" is rejected

    # Session tokens (generate each secret with: openssl rand -hex 32)
    ACCESS_TOKEN_SECRET: str = ""
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_SECRET: str = ""
    REFRESH_TOKEN_EXPIRE_DAYS: int = 10
    jwt_algorithm: str = "HS256"
    revoke_sessions_on_password_change: bool = False

    # Session cookies
    cookie_secure: bool = True
    cookie_samesite: str = "lax"

    # Uploads are staged here before being pushed to object storage
    upload_dir: Path = Path("./public/temp")

    # Object storage (Cloudinary)
    CLOUDINARY_CLOUD_NAME: str = ""
    CLOUDINARY_API_KEY: str = ""
    CLOUDINARY_API_SECRET: str = ""
    cloudinary_base_url: str = "https://api.cloudinary.com/v1_1"
    storage_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "vidstream-identity-api"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start without a database or with weak token secrets.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        for name in ("ACCESS_TOKEN_SECRET", "REFRESH_TOKEN_SECRET"):
            secret = getattr(self, name)
            if not secret:
                errors.append(f"{name} is required but empty or missing")
            elif len(secret) < MIN_SECRET_LENGTH:
                errors.append(f"{name} must be at least {MIN_SECRET_LENGTH} characters")

        if self.ACCESS_TOKEN_SECRET and self.ACCESS_TOKEN_SECRET == self.REFRESH_TOKEN_SECRET:
            errors.append("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ")

        if self.ACCESS_TOKEN_EXPIRE_MINUTES <= 0:
            errors.append("ACCESS_TOKEN_EXPIRE_MINUTES must be positive")
        if self.REFRESH_TOKEN_EXPIRE_DAYS <= 0:
            errors.append("REFRESH_TOKEN_EXPIRE_DAYS must be positive")

        if "*" in self.allowed_cors_origins:
            errors.append('CORS_ORIGINS must list explicit origins, not "*"')

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url

    @property
    def allowed_cors_origins(self) -> list[str]:
        """Parse the comma-separated CORS origin list."""
        origins = []
        for origin in self.cors_origins.split(","):
            origin = origin.strip()
            if origin and origin not in origins:
                origins.append(origin)
        return origins


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings
